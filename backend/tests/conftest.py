"""
Pytest configuration and fixtures.
"""
import math
import os
from datetime import datetime
from typing import AsyncGenerator

# Must be set before the app (and its limiter) is imported
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from geo_analysis.main import app
from geo_analysis.services.geo.geometry import EARTH_RADIUS_KM
from geo_analysis.services.geo.models import CustomerLocation, ServicePoint, ServicePointType

# Tabriz city centre
TABRIZ = (38.08, 46.29)

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180


def offset(origin: tuple[float, float], north_km: float = 0.0, east_km: float = 0.0) -> tuple[float, float]:
    """Point displaced from origin by the given distances."""
    lat = origin[0] + north_km / KM_PER_DEGREE
    lng = origin[1] + east_km / (KM_PER_DEGREE * math.cos(math.radians(origin[0])))
    return (lat, lng)


def make_customer(
    customer_id: str,
    point: tuple[float, float] = TABRIZ,
    monthly_profit: float = 1000.0,
    business_type: str = "grocery",
    created_at: datetime = None,
    status: str = "active",
) -> CustomerLocation:
    return CustomerLocation(
        id=customer_id,
        shop_name=f"Shop {customer_id}",
        latitude=point[0],
        longitude=point[1],
        monthly_profit=monthly_profit,
        business_type=business_type,
        created_at=created_at,
        status=status,
    )


def make_service_point(
    point_id: str = "BR-01",
    point: tuple[float, float] = TABRIZ,
    type: ServicePointType = ServicePointType.BRANCH,
) -> ServicePoint:
    return ServicePoint(
        id=point_id,
        name=f"Branch {point_id}",
        latitude=point[0],
        longitude=point[1],
        type=type,
    )


@pytest_asyncio.fixture(scope="function")
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the ASGI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Sample data fixtures
@pytest.fixture
def branch() -> ServicePoint:
    """Single branch in the city centre."""
    return make_service_point()


@pytest.fixture
def two_area_customers() -> list[CustomerLocation]:
    """
    Six customers around the centre and six around a suburb ~20 km away.

    Suburb customers are pharmacies with higher profit.
    """
    centre = [
        make_customer(f"C{i}", offset(TABRIZ, north_km=0.2 * i), monthly_profit=500.0)
        for i in range(6)
    ]
    suburb_origin = offset(TABRIZ, north_km=14.0, east_km=14.0)
    suburb = [
        make_customer(
            f"S{i}",
            offset(suburb_origin, east_km=0.2 * i),
            monthly_profit=2000.0,
            business_type="pharmacy",
        )
        for i in range(6)
    ]
    return centre + suburb


@pytest.fixture
def dated_customers() -> list[CustomerLocation]:
    """
    Two areas with creation history ending in December 2024.

    The centre acquires customers at an accelerating pace during 2024;
    the suburb acquired most of its customers early in the year.
    """
    customers = []
    centre_months = [6, 7, 8, 9, 9, 10, 10, 11, 11, 11, 12, 12, 12]
    for i, month in enumerate(centre_months):
        customers.append(
            make_customer(
                f"C{i}",
                offset(TABRIZ, north_km=0.1 * i),
                monthly_profit=800.0,
                created_at=datetime(2024, month, 15),
            )
        )

    suburb_origin = offset(TABRIZ, north_km=-15.0, east_km=10.0)
    suburb_months = [1, 1, 1, 2, 2, 3, 3, 4, 5, 6]
    for i, month in enumerate(suburb_months):
        customers.append(
            make_customer(
                f"S{i}",
                offset(suburb_origin, east_km=0.1 * i),
                monthly_profit=1500.0,
                business_type="bakery",
                created_at=datetime(2024, month, 10),
            )
        )
    return customers


@pytest.fixture
def sample_request_payload() -> dict:
    """camelCase request body as sent by the dashboard."""
    near = offset(TABRIZ, north_km=1.0)
    far = offset(TABRIZ, north_km=20.0)
    return {
        "customers": [
            {
                "id": "CUST-001",
                "shopName": "Bazaar Market",
                "latitude": str(TABRIZ[0]),
                "longitude": str(TABRIZ[1]),
                "monthlyProfit": 1200,
                "businessType": "grocery",
                "status": "active",
                "createdAt": "2024-03-14T10:00:00Z",
            },
            {
                "id": "CUST-002",
                "shopName": "Corner Pharmacy",
                "latitude": near[0],
                "longitude": near[1],
                "monthlyProfit": 900,
                "businessType": "pharmacy",
                "createdAt": "2024-05-02T09:30:00Z",
            },
            {
                "id": "CUST-003",
                "shopName": "Ring Road Bakery",
                "latitude": far[0],
                "longitude": far[1],
                "monthlyProfit": 1500,
                "businessType": "bakery",
                "createdAt": "2024-06-20T12:00:00Z",
            },
            {
                "id": "CUST-004",
                "shopName": "No Location Yet",
                "latitude": "abc",
                "longitude": "",
                "monthlyProfit": 300,
            },
        ],
        "servicePoints": [
            {
                "id": "BR-01",
                "name": "Central branch",
                "latitude": TABRIZ[0],
                "longitude": TABRIZ[1],
                "type": "branch",
            }
        ],
        "options": {"clusterCount": 2, "coverageRadius": 5},
    }
