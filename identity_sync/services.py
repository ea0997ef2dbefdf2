"""Service objects built once at startup and passed to providers and jobs."""

from __future__ import annotations

from dataclasses import dataclass

from identity_sync.config import SyncConfig
from identity_sync.coordinator import DualWriteCoordinator
from identity_sync.db import Database
from identity_sync.directory import Directory
from identity_sync.field_mapper import FieldMapper


@dataclass
class Services:
    db: Database
    directory: Directory
    mapper: FieldMapper
    coordinator: DualWriteCoordinator

    def close(self) -> None:
        self.directory.close()
        self.db.close()


def build_services(config: SyncConfig) -> Services:
    db = Database(config.database)
    directory = Directory(config.ldap)
    return Services(
        db=db,
        directory=directory,
        mapper=FieldMapper(db),
        coordinator=DualWriteCoordinator(config, db, directory),
    )
