#!/usr/bin/env python3
"""
WhatsApp correlation stage

Entry point called by the extraction pipeline once per discovered artifact.
Message stores are first decoded and registered (optionally downloading
their missing media), then re-submitted with the terminal content type; at
that point every copy of the case is visible and backups are merged into
their main database before the chats are reported.

Invocations may run concurrently and in any order.
"""

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, List, Optional

from common.config import CorrelatorConfig
from common.failure_tracker import FailureTracker
from common.processing import temp_processing_directory
from correlator import content_types
from correlator.account import AccountLocator
from correlator.base import (
    ChatRenderer,
    FallbackViewer,
    JsonChatRenderer,
    LinkExtractor,
    ReportSink,
    SearchIndex,
    SourceVariant,
)
from correlator.contacts import AvatarResolver, ContactsDirectoryCache
from correlator.download import DownloadCoordinator, DownloadedHashes, DownloadPool
from correlator.errors import CorrelatorError, DecodeError
from correlator.media import MediaResolver
from correlator.merge import ChatMerge, merge_backups_into
from correlator.models import Chat, Item
from correlator.registry import DatabaseContext, DatabaseRegistry
from correlator.report import ReportBuilder
from correlator.variant_registry import VariantRegistry

logger = logging.getLogger(__name__)


class CaseRun:
    """State shared by every artifact of one case.

    Owns the database registry, the contacts and account caches, the
    download dedup set, the download worker pool and the audit trail.
    Create one per case and close it when the case is done.
    """

    def __init__(
        self,
        config: Optional[CorrelatorConfig] = None,
        index: Optional[SearchIndex] = None,
        case_name: str = "case",
    ):
        self.config = config or CorrelatorConfig()
        self.index = index
        self.case_name = case_name
        self.registry = DatabaseRegistry()
        self.contacts = ContactsDirectoryCache(index, materializer=self.materialize)
        self.accounts = AccountLocator(index)
        self.downloaded_hashes = DownloadedHashes()
        self.pool = DownloadPool(self.config.download_pool_size)
        self.tracker = FailureTracker(case_name)

    @contextmanager
    def materialize(self, item: Item) -> Generator[Path, None, None]:
        """Yield a local file holding the item content

        Items without a local copy are spilled to a scoped temporary
        directory removed on exit.
        """
        if item.local_file is not None:
            yield Path(item.local_file)
            return
        with temp_processing_directory(self.config.temp_dir, "db") as temp_dir:
            db_file = temp_dir / (item.name or "database")
            with item.open() as src, open(db_file, "wb") as dst:
                shutil.copyfileobj(src, dst)
            yield db_file

    def close(self) -> None:
        """Shut the download pool down; in-flight units complete"""
        self.pool.shutdown(wait=True)
        summary = self.tracker.get_summary()
        logger.info(
            f"Case {self.case_name} done: {summary['backups_merged']} backups merged, "
            f"{summary['messages_recovered']} messages recovered"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class WhatsAppCorrelator:
    """Pipeline stage dispatching artifacts by content type"""

    def __init__(
        self,
        case: CaseRun,
        variants: VariantRegistry,
        sink: ReportSink,
        renderer: Optional[ChatRenderer] = None,
        link_extractor: Optional[LinkExtractor] = None,
        fallback_viewer: Optional[FallbackViewer] = None,
    ):
        self.case = case
        self.config = case.config
        self.variants = variants
        self.sink = sink
        self.fallback_viewer = fallback_viewer
        self.resolver = MediaResolver(
            case.index,
            self.config.link_media_by_name_and_approx_size_fallback,
            self.config.search_batch_size,
        )
        self.builder = ReportBuilder(
            sink,
            renderer or JsonChatRenderer(),
            self.resolver,
            AvatarResolver(case.index),
            extract_messages=self.config.extract_messages,
            tracker=case.tracker,
        )
        self.downloader = DownloadCoordinator(
            case.pool,
            case.downloaded_hashes,
            link_extractor,
            sink,
            connect_timeout_ms=self.config.download_connection_timeout,
            read_timeout_ms=self.config.download_read_timeout,
            temp_dir=self.config.temp_dir,
            tracker=case.tracker,
        )

    @staticmethod
    def supported_types():
        return content_types.SUPPORTED_TYPES

    def process(self, item: Item) -> Optional[str]:
        """Process one artifact

        Args:
            item: The artifact, tagged with its content type

        Returns:
            The content type the pipeline must re-submit the artifact with,
            or None when the artifact is done

        Raises:
            CorrelatorError: If the artifact could not be processed; the
                original exception is chained as the cause
        """
        content_type = item.content_type
        variant = self.variants.for_content_type(content_type)
        if variant is None:
            logger.debug(f"Ignoring {item.path}: unsupported content type {content_type}")
            return None

        try:
            if content_type == variant.account_content_type:
                self._parse_account(item, variant)
            elif content_type == variant.contacts_content_type:
                self._parse_contacts(item, variant)
            elif content_type == content_types.MSG_STORE:
                if self.config.needs_registration:
                    return self._parse_and_register(item, variant)
                self._parse_messages(item, variant)
            elif content_type == content_types.CHAT_STORAGE:
                self._parse_messages(item, variant)
            elif content_type == content_types.MSG_STORE_TERMINAL:
                self.merge_and_report(item, variant)
            return None
        except CorrelatorError as e:
            logger.error(f"Failed to process {item.path}: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to process {item.path}: {e}")
            raise CorrelatorError(f"Failed to process {item.path}") from e

    # ------------------------------------------------------------------
    # Account and contacts
    # ------------------------------------------------------------------

    def _parse_account(self, item: Item, variant: SourceVariant) -> None:
        account = variant.parse_account(item.read_bytes())
        if account is None:
            self.case.tracker.add_decode_failure(item.path, "Corrupted account file")
            raise DecodeError(f"Corrupted WhatsApp account file: {item.path}")
        self.builder.report_account(account)

    def _parse_contacts(self, item: Item, variant: SourceVariant) -> None:
        try:
            with self.case.materialize(item) as db_file:
                directory = variant.create_contacts_extractor(db_file).get_contacts()
        except DecodeError as e:
            self._fallback(item, e)
            raise

        self.case.contacts.store(item.path, directory)
        account = self.case.accounts.get_account(item.path, variant)
        for contact in directory.contacts():
            self.builder.report_contact(contact, account)
        logger.info(f"Reported {len(directory)} contacts from {item.path}")

    # ------------------------------------------------------------------
    # Message databases
    # ------------------------------------------------------------------

    def _decode_chats(self, item: Item, variant: SourceVariant) -> List[Chat]:
        contacts = self.case.contacts.get_for_path(item.path, self.variants.get_all_variants())
        account = self.case.accounts.get_account(item.path, variant)
        with self.case.materialize(item) as db_file:
            return variant.create_message_extractor(db_file, contacts, account).get_chat_list()

    def _report(self, item: Item, chats: List[Chat], variant: SourceVariant) -> None:
        contacts = self.case.contacts.get_for_path(item.path, self.variants.get_all_variants())
        account = self.case.accounts.get_account(item.path, variant)
        emitted = self.builder.report_chats(chats, contacts, account, source=item)
        logger.info(f"Reported {len(chats)} chats ({emitted} units) from {item.path}")

    def _parse_messages(self, item: Item, variant: SourceVariant) -> None:
        try:
            chats = self._decode_chats(item, variant)
        except DecodeError as e:
            self._fallback(item, e)
            raise
        self._report(item, chats, variant)

    def _parse_and_register(self, item: Item, variant: SourceVariant) -> str:
        context, is_new = self.case.registry.register(item)
        try:
            chats = context.ensure_chats(lambda it: self._decode_chats(it, variant))
        except DecodeError as e:
            if is_new:
                self.case.registry.remove(item.id)
            self._fallback(item, e)
            raise

        if self.config.download_enabled:
            messages = [m for chat in chats for m in chat.messages]
            result = self.resolver.resolve(messages, save_item_ref=False)
            if result.missing_hashes:
                with self.case.materialize(item) as db_file:
                    self.downloader.download_for_artifact(item, db_file, result.missing_hashes)

        return content_types.MSG_STORE_TERMINAL

    def merge_and_report(self, item: Item, variant: SourceVariant) -> None:
        """Merge backups with their main database and report the result

        Called for the terminal content type, once every copy of the case
        has been registered.
        """
        registry = self.case.registry
        registry.backfill_from_index(self.case.index, variant.message_content_types)

        context = registry.get(item.id)
        if context is None:
            context, _ = registry.register(item)

        def loader(it: Item) -> List[Chat]:
            return self._decode_chats(it, variant)

        try:
            try:
                context.ensure_chats(loader)
            except DecodeError as e:
                registry.remove(item.id)
                self._fallback(item, e)
                raise
            self._decode_others(context, loader)

            if not self.config.merge_backups:
                self._report(item, context.chats, variant)
                registry.remove(item.id)
                return

            if context.is_confirmed_backup:
                self.builder.report_backup_notice(item, context.main_item)
                return

            if context.is_main:
                with context.merge_lock:
                    context.close_merging()
                    candidates = [
                        db
                        for db in registry.sorted_by_name_desc()
                        if db is not context and not db.is_main and db.chats
                    ]
                    merge_backups_into(context, candidates, self.case.tracker)
            elif self._confirm_backup(context, registry.sorted_by_name_desc()):
                return
            else:
                if context.merged:
                    logger.info(f"{item.path} was already merged into its main database")
                logger.info(f"Creating separate report for {item.path}")
                context.mark_standalone()

            self._report(item, context.chats, variant)
            registry.remove(item.id)

        finally:
            if registry.should_release_all():
                registry.release_all()

    def _decode_others(self, context: DatabaseContext, loader) -> None:
        for other in self.case.registry.contexts():
            if other is context or other.decoded:
                continue
            try:
                other.ensure_chats(loader)
            except DecodeError as e:
                other.mark_standalone()
                logger.warning(
                    f"Could not decode database {other.path} ({other.item.length} bytes): {e}"
                )
                self.case.tracker.add_decode_failure(other.path, str(e), {"length": other.item.length})

    def _confirm_backup(self, context: DatabaseContext, ordered: List[DatabaseContext]) -> bool:
        """Find the main database context is a backup of and emit the notice"""
        for main in ordered:
            if main is context or not main.is_main or main.chats is None:
                continue
            with main.merge_lock:
                if main.merging_closed:
                    logger.debug(f"{main.path} already merged its backups, skipping")
                    continue
                confirmed = ChatMerge(main.chats, context.name).is_backup(context.chats)
            if confirmed:
                context.mark_backup_of(main.item)
                self.builder.report_backup_notice(context.item, main.item)
                self.case.registry.increment_backups_merged()
                logger.debug(f"{context.path} is a backup of {main.path}")
                return True
        return False

    def _fallback(self, item: Item, error: Exception) -> None:
        self.case.tracker.add_decode_failure(
            item.path, str(error), {"length": item.length, "content_type": item.content_type}
        )
        if self.fallback_viewer is None:
            return
        try:
            self.fallback_viewer.view(item)
        except Exception as e:
            logger.warning(f"Fallback viewer failed for {item.path}: {e}")
