"""CLI job that backfills coordinates onto records that only have addresses."""

import argparse
import logging
import time
from typing import Optional, Sequence

from geobackfill.core import db
from geobackfill.core.config import ConfigError, Settings, get_settings, require_migration_settings
from geobackfill.core.db import BatchWriter, count_documents, geocoding_fields, iter_documents
from geobackfill.core.resolver import AddressResolver
from geobackfill.etl.addresses import ADDRESS_FIELDS, DEFAULT_ADDRESS_FIELDS, extract_address
from geobackfill.etl.coordinates import has_coordinates
from geobackfill.models import MigrationReport, MigrationStats
from geobackfill.vendors.google_geocoding import (
    Denied,
    GeocodingClient,
    GeocodingDeniedError,
    GeocodingError,
    Match,
    NoMatch,
    TransportError,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_CONFIG = 2
EXIT_DENIED = 3

_DENIED_HELP = (
    "Google Maps Geocoding API authorization error: this API key is not authorized to use the Geocoding API.\n"
    "  To fix this:\n"
    "  1. Enable the Geocoding API for the key's project:\n"
    "     https://console.cloud.google.com/apis/library/geocoding-backend.googleapis.com\n"
    "  2. Check the API restrictions on the key:\n"
    "     https://console.cloud.google.com/apis/credentials\n"
    "  3. Wait a few minutes for the change to propagate, then re-run the migration.\n"
    "  API error: %s"
)


class BatchMigrator:
    """Migrates a single collection, one record at a time."""

    def __init__(
        self,
        collection: str,
        resolver: AddressResolver,
        *,
        batch_size: int = 500,
        request_delay: float = 0.1,
        address_fields: Optional[Sequence[str]] = None,
    ) -> None:
        self.collection = collection
        self.resolver = resolver
        self.batch_size = batch_size
        self.request_delay = request_delay
        self.address_fields = address_fields or ADDRESS_FIELDS.get(collection, DEFAULT_ADDRESS_FIELDS)
        self.stats = MigrationStats(collection=collection)

    def _record_failed_batch(self, batch, exc: Exception) -> None:
        ids = ", ".join(doc_id for doc_id, _ in batch)
        self.stats.failed += len(batch)
        self.stats.errors.append(f"Failed to write {len(batch)} {self.collection} records ({ids}): {exc}")

    def run(self) -> MigrationStats:
        """Migrate the collection. ``self.stats`` stays accurate even if this raises."""
        self.stats = stats = MigrationStats(collection=self.collection)
        logger.info("Migrating %s collection...", self.collection)
        logger.info("Found %d %s", count_documents(self.collection), self.collection)

        writer = BatchWriter(self.collection, batch_size=self.batch_size, on_failure=self._record_failed_batch)
        try:
            with writer:
                for doc_id, data in iter_documents(self.collection, page_size=self.batch_size):
                    stats.processed += 1
                    address = extract_address(data, self.address_fields)
                    if address is None or has_coordinates(data.get("coordinates")):
                        stats.skipped += 1
                        continue
                    self._migrate_record(writer, doc_id, address)
        finally:
            stats.updated = writer.committed

        logger.info(
            "%s migration completed: %d updated, %d skipped, %d failed",
            self.collection,
            stats.updated,
            stats.skipped,
            stats.failed,
        )
        return stats

    def _migrate_record(self, writer: BatchWriter, doc_id: str, address: str) -> None:
        try:
            logger.info("  Geocoding %s %s: %s", self.collection, doc_id, address)
            result = self.resolver.resolve(address)
            if result is None:
                self.stats.skipped += 1
                return
            writer.stage(doc_id, geocoding_fields(result))
        except GeocodingDeniedError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.stats.failed += 1
            message = f"Failed to geocode {self.collection} {doc_id}: {address} ({exc})"
            self.stats.errors.append(message)
            logger.error(message)
        finally:
            time.sleep(self.request_delay)


class MigrationDriver:
    """Checks credentials once, then migrates every configured collection in order."""

    def __init__(self, settings: Settings, client: GeocodingClient) -> None:
        self.settings = settings
        self.client = client
        self.resolver = AddressResolver(
            client,
            settings.bounds,
            country=settings.country,
            fallback_delay=settings.fallback_delay,
        )
        self.denied_reported = False

    def report_denied(self, message: str) -> None:
        if self.denied_reported:
            return
        self.denied_reported = True
        logger.error(_DENIED_HELP, message)

    def check_connectivity(self) -> None:
        db.init_pool()
        db.ping()
        logger.info("Document store reachable")

        logger.info("Testing Google Maps API key...")
        outcome = self.client.geocode(self.settings.probe_address)
        if isinstance(outcome, Denied):
            self.report_denied(outcome.message)
            raise GeocodingDeniedError(outcome.message)
        if isinstance(outcome, TransportError):
            raise GeocodingError(f"Geocoding API unreachable: {outcome.message}")
        if isinstance(outcome, NoMatch):
            raise GeocodingError(
                f"Geocoding probe for {self.settings.probe_address!r} returned status {outcome.status}"
                + (f": {outcome.message}" if outcome.message else "")
            )
        if isinstance(outcome, Match):
            logger.info("Google Maps API key is working correctly")

    def run(self) -> MigrationReport:
        logger.info("Starting address to coordinates migration")
        self.check_connectivity()

        report = MigrationReport()
        for collection in self.settings.collections:
            migrator = BatchMigrator(
                collection,
                self.resolver,
                batch_size=self.settings.batch_size,
                request_delay=self.settings.request_delay,
            )
            try:
                migrator.run()
            except GeocodingDeniedError as exc:
                self.report_denied(str(exc))
                raise
            except Exception as exc:  # noqa: BLE001
                logger.exception("%s migration failed: %s", collection, exc)
                report.errors.append(f"{collection} migration failed: {exc}")
            finally:
                report.add(migrator.stats)
        return report


def run_migration(settings: Optional[Settings] = None) -> MigrationReport:
    settings = settings or get_settings()
    require_migration_settings(settings)
    client = GeocodingClient(settings.google_maps_api_key, region=settings.region)
    return MigrationDriver(settings, client).run()


def format_summary(report: MigrationReport, max_errors: int = 10) -> str:
    rule = "-" * 52
    lines = ["Migration Summary:", rule]
    lines.append(f"{'Collection':<16}{'Processed':>9}{'Updated':>9}{'Skipped':>9}{'Failed':>9}")
    for stats in report.collections:
        lines.append(
            f"{stats.collection:<16}{stats.processed:>9}{stats.updated:>9}{stats.skipped:>9}{stats.failed:>9}"
        )
    lines.append(
        f"{'Total':<16}{sum(s.processed for s in report.collections):>9}{report.total_updated:>9}"
        f"{sum(s.skipped for s in report.collections):>9}{report.total_failed:>9}"
    )

    if report.errors:
        lines.append("")
        lines.append(f"Errors ({len(report.errors)}):")
        for error in report.errors[:max_errors]:
            lines.append(f"  - {error}")
        if len(report.errors) > max_errors:
            lines.append(f"  ... and {len(report.errors) - max_errors} more errors")

    if report.total_updated:
        lines.append("")
        lines.append(f"Successfully updated {report.total_updated} records with coordinates.")
    if report.total_failed:
        lines.append("")
        lines.append(f"Failed to geocode {report.total_failed} addresses. Check errors above.")
    if not report.total_updated and not report.total_failed:
        lines.append("")
        lines.append("All records already have coordinates or no addresses found.")
    lines.append(rule)
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        description="Backfill coordinates for users, vets and businesses that only have addresses"
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    build_parser().parse_args(argv)

    try:
        settings = get_settings()
        report = run_migration(settings)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(EXIT_CONFIG) from exc
    except GeocodingDeniedError as exc:
        logger.error("Migration aborted: the Geocoding API denied the request (%s)", exc)
        raise SystemExit(EXIT_DENIED) from exc
    except Exception as exc:  # pragma: no cover - CLI fallback
        logger.error("Migration failed: %s", exc, exc_info=True)
        raise SystemExit(EXIT_ERRORS) from exc

    print(format_summary(report, max_errors=settings.max_reported_errors))
    raise SystemExit(EXIT_ERRORS if report.has_errors else EXIT_OK)


if __name__ == "__main__":
    main()
