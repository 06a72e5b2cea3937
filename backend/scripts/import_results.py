"""
Import lab result files from a directory for one patient.
Run with: python -m scripts.import_results <directory> <patient_email> [--priority high]
"""

import argparse
import asyncio
import mimetypes
import os
from clarifind.config import get_settings
from clarifind.database import engine, Base, async_session
from clarifind.exceptions import FileReadError, UploadRejectedError
from clarifind.services.encoding import read_file_as_data_uri, validate_upload
from clarifind.services.lab_result_store import LabResultStore
from clarifind.services.storage import DatabaseStorage


async def import_directory(directory: str, patient_email: str, priority: str = None) -> int:
    settings = get_settings()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    imported = 0
    async with async_session() as session:
        store = LabResultStore(DatabaseStorage(session), key=settings.lab_results_storage_key)
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            if not os.path.isfile(path):
                continue
            content_type = mimetypes.guess_type(name)[0] or ""
            try:
                file_data, size = await read_file_as_data_uri(path, content_type)
                validate_upload(content_type, size, settings)
            except (FileReadError, UploadRejectedError) as e:
                print(f"  Skipping {name}: {e}")
                continue
            result = await store.create_encoded(
                file_name=name,
                file_data=file_data,
                size=size,
                patient_email=patient_email,
                content_type=content_type,
                priority=priority,
            )
            print(f"  {result.id}  {result.test_type:<24} {name} ({result.file_size})")
            imported += 1
        await session.commit()
    await engine.dispose()
    return imported


def main():
    parser = argparse.ArgumentParser(description="Import lab result files for a patient")
    parser.add_argument("directory")
    parser.add_argument("patient_email")
    parser.add_argument("--priority", choices=["low", "normal", "high", "urgent"])
    args = parser.parse_args()

    count = asyncio.run(import_directory(args.directory, args.patient_email, args.priority))
    print(f"Imported {count} lab results.")


if __name__ == "__main__":
    main()
