"""
Shared fixtures for the bin optimization tests.

Each test gets a fresh in-memory SQLite database with every table created
from Base.metadata, plus factory helpers for the warehouse data the
services read.
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base, custom_json_dumps
from app.models.inventory import Lot, Material
from app.models.tenant import Tenant
from app.models.wms import InventoryLocation
from app.services.bin_optimization.affinity import clear_affinity_cache
from app.services.bin_optimization.congestion import invalidate_congestion_cache


@pytest.fixture(autouse=True)
def clear_caches():
    """Process-wide caches must not leak between tests."""
    invalidate_congestion_cache()
    clear_affinity_cache()
    yield
    invalidate_congestion_cache()
    clear_affinity_cache()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        json_serializer=custom_json_dumps,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def tenant(db):
    tenant = Tenant(name="Acme Distribution", code="ACME")
    db.add(tenant)
    await db.flush()
    return tenant


@pytest.fixture
async def other_tenant(db):
    tenant = Tenant(name="Globex Logistics", code="GLOBEX")
    db.add(tenant)
    await db.flush()
    return tenant


@pytest.fixture
def facility_id():
    return uuid.uuid4()


@pytest.fixture
def make_location(db, tenant, facility_id):
    """Factory for inventory locations (defaults: empty 100 cf RESERVE bin)."""
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        values = dict(
            tenant_id=tenant.id,
            facility_id=facility_id,
            location_code=f"LOC-{counter['n']:03d}",
            location_type="RESERVE",
            zone_code="Z1",
            aisle_code="A01",
            cubic_feet=100.0,
            used_cubic_feet=0.0,
            max_weight_lbs=2000.0,
            current_weight_lbs=0.0,
            abc_classification="C",
            pick_sequence=500,
            security_zone="STANDARD",
            temperature_controlled=False,
            is_active=True,
            is_available=True,
        )
        values.update(overrides)
        location = InventoryLocation(**values)
        db.add(location)
        await db.flush()
        return location

    return _make


@pytest.fixture
def make_material(db, tenant, facility_id):
    """Factory for materials (defaults: 12 in cube, 1 cf, 5 lbs, class C)."""
    counter = {"n": 0}

    async def _make(**overrides):
        counter["n"] += 1
        values = dict(
            tenant_id=tenant.id,
            facility_id=facility_id,
            material_code=f"MAT-{counter['n']:03d}",
            length_inches=12.0,
            width_inches=12.0,
            height_inches=12.0,
            weight_lbs_per_unit=5.0,
            abc_classification="C",
            temperature_controlled=False,
            security_zone="STANDARD",
        )
        values.update(overrides)
        material = Material(**values)
        db.add(material)
        await db.flush()
        return material

    return _make


@pytest.fixture
def make_lot(db, tenant):
    """Factory for lots stored at a location."""
    counter = {"n": 0}

    async def _make(material, location, quantity=10.0, **overrides):
        counter["n"] += 1
        values = dict(
            tenant_id=tenant.id,
            lot_number=f"STORED-{counter['n']:03d}",
            material_id=material.id,
            location_id=location.id,
            quantity_on_hand=quantity,
            received_at=datetime.now(timezone.utc),
        )
        values.update(overrides)
        lot = Lot(**values)
        db.add(lot)
        await db.flush()
        return lot

    return _make
