"""Script to initialize the database and optionally seed a demo doctor."""

import asyncio
import sys

from sqlalchemy import insert, select

from app.database import engine
from app.models import doctors, metadata, services


async def init_db(seed: bool = False) -> None:
    """Create all tables, then add a demo doctor when asked."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

        if seed:
            existing = await conn.execute(select(doctors.c.id).limit(1))
            if existing.first() is None:
                result = await conn.execute(
                    insert(doctors).values(
                        name="Dr. Demo",
                        website="demo",
                        whatsapp="9000000000",
                        notification_profile="standard",
                        timings={"no location": ["10:00", "10:30", "11:00", "11:30"]},
                    )
                )
                await conn.execute(
                    insert(services).values(
                        doctor_id=result.inserted_primary_key[0], name="Consultation"
                    )
                )
                print("✓ Seeded demo doctor")

    print("✓ Database initialized successfully!")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db(seed="--seed" in sys.argv))
