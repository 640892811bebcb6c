#!/usr/bin/env python3
"""
Demo Media Seeder - Populates media_assets with sample uploads for CLI testing

This script creates:
- A demo project with a mix of small, medium and large images
- A few video records for frame analysis
- One record already completed so the processing view is not empty of history
"""

import asyncio

from mediaqueue.config.settings import settings
from mediaqueue.infra.database import Database
from mediaqueue.v1.media.models import MediaAsset, MediaStatus

DEMO_PROJECT_ID = "demo-project"

KB = 1024
MB = 1024 * KB

DEMO_MEDIA = [
    ("demo-img-tiny", "image", "shelf-closeup.jpg", 300 * KB, MediaStatus.UPLOADED),
    ("demo-img-small", "image", "pantry-wide.jpg", 3 * MB, MediaStatus.UPLOADED),
    ("demo-img-medium", "image", "garage-panorama.jpg", 12 * MB, MediaStatus.UPLOADED),
    ("demo-img-large", "image", "warehouse-raw.tiff", 28 * MB, MediaStatus.UPLOADED),
    ("demo-vid-walkthrough", "video", "walkthrough.mp4", 80 * MB, MediaStatus.UPLOADED),
    ("demo-img-done", "image", "office-desk.jpg", 800 * KB, MediaStatus.COMPLETED),
]


async def seed_demo_media():
    """Seed media_assets with demo uploads"""
    database = Database(settings)
    created = 0

    try:
        async with database.session() as session:
            for media_id, kind, name, size, status in DEMO_MEDIA:
                if await session.get(MediaAsset, media_id):
                    print(f"ℹ️ {media_id} already exists")
                    continue

                session.add(
                    MediaAsset(
                        id=media_id,
                        project_id=DEMO_PROJECT_ID,
                        kind=kind,
                        name=name,
                        size=size,
                        storage_url=f"https://blobs.example.com/{DEMO_PROJECT_ID}/{name}",
                        status=status.value,
                        result={"itemsProcessed": 5}
                        if status is MediaStatus.COMPLETED
                        else None,
                    )
                )
                created += 1

            await session.commit()
    finally:
        await database.close()

    print(f"✅ Created {created} demo media records in project '{DEMO_PROJECT_ID}'")
    print("\n💡 Next steps:")
    print(f"   media-queue jobs enqueue demo-img-tiny --project {DEMO_PROJECT_ID}")
    print(f"   media-queue projects processing {DEMO_PROJECT_ID}")


if __name__ == "__main__":
    asyncio.run(seed_demo_media())
