#!/usr/bin/env python3
"""
Reporting records

Builds the units handed to the reporting collaborator: one unit per chat
fragment, one per message (when message extraction is enabled), one per
account and contact, and the notice emitted for merged backups.
"""

import base64
import logging
from typing import Dict, List, Optional, Union

from common.failure_tracker import FailureTracker
from common.utils import format_mmss, international_phone
from correlator import content_types
from correlator.base import ChatRenderer, ReportSink
from correlator.contacts import AvatarResolver
from correlator.media import MediaResolver
from correlator.models import Account, Chat, Contact, ContactsDirectory, Item, Message, ReportUnit

logger = logging.getLogger(__name__)

MESSAGE_TYPE_PREFIX = "! "
VCARD_MIME = "text/x-vcard"
ACCOUNT_TYPE = "WhatsApp"


def format_contact(contact: Union[Contact, Account], cache: Optional[Dict[str, str]] = None) -> str:
    """Display form of a participant

    Example:
        >>> format_contact(Contact("5561999", name="Alice"))
        'Alice (5561999@s.whatsapp.net)'
        >>> format_contact(Contact("5561999", name="5561999"))
        '5561999@s.whatsapp.net'
    """
    if cache is not None and contact.id in cache:
        return cache[contact.id]
    name = contact.name.strip() if contact.name else None
    if not name or name == contact.id:
        result = contact.full_id
    else:
        result = f"{name} ({contact.full_id})"
    if cache is not None:
        cache[contact.id] = result
    return result


def _location(message: Message) -> str:
    return f"{message.latitude};{message.longitude}"


class ReportBuilder:
    """Emits the report units of decoded entities into the sink"""

    def __init__(
        self,
        sink: ReportSink,
        renderer: ChatRenderer,
        resolver: MediaResolver,
        avatars: AvatarResolver,
        extract_messages: bool = True,
        tracker: Optional[FailureTracker] = None,
    ):
        self.sink = sink
        self.renderer = renderer
        self.resolver = resolver
        self.avatars = avatars
        self.extract_messages = extract_messages
        self.tracker = tracker

    def report_chats(
        self,
        chats: List[Chat],
        contacts: ContactsDirectory,
        account: Account,
        source: Optional[Item] = None,
    ) -> int:
        """Resolve media and report every chat of a database

        Returns:
            Number of units emitted
        """
        cache: Dict[str, str] = {}
        emitted = 0
        virtual_id = 0
        for chat in chats:
            if chat.remote is not None:
                self.avatars.attach_avatar(chat.remote)
            result = self.resolver.resolve(chat.messages, save_item_ref=True)
            if self.tracker is not None and source is not None:
                for media_hash, messages in result.missing_hashes.items():
                    self.tracker.add_unresolved_media(
                        source.path, media_hash, messages[0].media_name, len(messages)
                    )
            emitted, virtual_id = self._report_chat(chat, contacts, account, cache, emitted, virtual_id)
            # drop heavy item references
            for message in chat.messages:
                message.media_item = None
        return emitted

    def _report_chat(self, chat, contacts, account, cache, emitted, virtual_id):
        fragments = self.renderer.render_chat(chat, contacts, account)
        first = 0
        for frag, (data, end) in enumerate(fragments):
            subset = chat.messages[first:end]
            first = end

            title = chat.get_title()
            if len(fragments) > 1:
                title = f"{title}_{frag}"

            unit = ReportUnit(data)
            unit.attributes["title"] = title
            unit.attributes["content_type"] = content_types.CHAT
            unit.attributes["virtual_id"] = str(virtual_id)
            unit.attributes["decoded"] = "true"
            self._store_linked_items(subset, unit)
            if not self.extract_messages:
                for m in subset:
                    if m.is_location and m.latitude != 0.0 and m.longitude != 0.0:
                        unit.add("locations", _location(m))
            if self.extract_messages and subset:
                unit.attributes["has_child"] = "true"

            if account is not None:
                unit.add("participants", format_contact(account, cache))
            if chat.group_chat:
                for member in chat.group_members:
                    unit.add("participants", format_contact(member, cache))
                if chat.remote is not None:
                    unit.add("group_id", chat.remote.full_id)
            elif chat.remote is not None:
                unit.add("participants", format_contact(chat.remote, cache))

            self.sink.report(unit)
            emitted += 1

            if self.extract_messages:
                emitted += self._report_messages(title, chat, subset, account, contacts, virtual_id, cache)
            virtual_id += 1
        return emitted, virtual_id

    @staticmethod
    def _store_linked_items(messages: List[Message], unit: ReportUnit) -> None:
        for m in messages:
            if m.media_query is not None and m.media_size > 2:
                unit.add("linked_items", m.media_query)
                if m.from_me:
                    unit.add("shared_hashes", m.media_query)

    def _report_messages(
        self,
        chat_name: str,
        chat: Chat,
        messages: List[Message],
        account: Account,
        contacts: ContactsDirectory,
        parent_virtual_id: int,
        cache: Dict[str, str],
    ) -> int:
        emitted = 0
        for count, m in enumerate(messages):
            unit = ReportUnit(b"")
            attrs = unit.attributes
            attrs["title"] = f"{chat_name}_message_{count}"
            attrs["content_type"] = content_types.MESSAGE
            attrs["parent_virtual_id"] = str(parent_virtual_id)
            attrs["parent_view_position"] = str(m.id)
            attrs["account_type"] = ACCOUNT_TYPE
            attrs["message_date"] = m.timestamp.isoformat() if m.timestamp else None
            attrs["decoded"] = "true"

            if not m.is_system_message:
                self._fill_direction(unit, chat, m, account, contacts, cache)

            if m.media_name:
                attrs["media_name"] = m.media_name
            if m.media_mime:
                attrs["media_mime"] = m.media_mime
            if m.media_size:
                attrs["media_size"] = str(m.media_size)
            if m.url:
                attrs["url"] = m.url
            if m.media_query is not None:
                attrs["content_type"] = content_types.ATTACHMENT
                attrs["linked_items"] = m.media_query
            if m.is_location:
                attrs["locations"] = _location(m)
            if m.status is not None:
                attrs["message_status"] = str(m.status)
            if m.is_call:
                attrs["content_type"] = content_types.CALL
                attrs["duration"] = format_mmss(m.media_duration)

            body = [m.data if m.data is not None else MESSAGE_TYPE_PREFIX + str(m.message_type)]
            if m.media_caption is not None:
                body.append(m.media_caption)
            attrs["message_body"] = body

            if m.vcards:
                attrs["content_type"] = VCARD_MIME
                for vcard in m.vcards:
                    self.sink.report(ReportUnit(vcard.encode("utf-8"), dict(attrs)))
                    emitted += 1
            else:
                attrs["length"] = ""
                self.sink.report(unit)
                emitted += 1
        return emitted

    @staticmethod
    def _fill_direction(unit, chat, m, account, contacts, cache) -> None:
        local = format_contact(account, cache)
        remote = m.remote_resource
        if remote is not None:
            contact = contacts.get_contact(remote)
            remote = format_contact(contact, cache) if contact is not None else remote
        elif not chat.group_chat and chat.remote is not None:
            remote = format_contact(chat.remote, cache)

        sender = local if m.from_me else remote
        unit.attributes["message_from"] = sender
        if chat.group_chat:
            for member in chat.group_members:
                participant = format_contact(member, cache)
                if participant != sender:
                    unit.add("message_to", participant)
        else:
            unit.add("message_to", remote if m.from_me else local)

    def report_account(self, account: Account) -> ReportUnit:
        unit = ReportUnit(self.renderer.render_account(account))
        attrs = unit.attributes
        attrs["title"] = account.title
        attrs["content_type"] = content_types.ACCOUNT
        attrs["user_name"] = account.name
        attrs["user_phone"] = international_phone(account.id)
        attrs["user_account"] = account.full_id
        attrs["account_type"] = ACCOUNT_TYPE
        attrs["user_notes"] = account.status
        attrs["decoded"] = "true"
        if account.avatar is not None:
            attrs["thumbnail_base64"] = base64.b64encode(account.avatar).decode("ascii")
        self.sink.report(unit)
        return unit

    def report_contact(self, contact: Contact, account: Account) -> ReportUnit:
        self.avatars.attach_avatar(contact)
        unit = ReportUnit(self.renderer.render_contact(contact))
        attrs = unit.attributes
        attrs["title"] = contact.title
        attrs["content_type"] = content_types.CONTACT
        attrs["user_name"] = contact.name
        attrs["user_phone"] = international_phone(contact.id)
        attrs["user_account"] = contact.full_id
        attrs["account_type"] = ACCOUNT_TYPE
        attrs["contact_of_account"] = account.full_id
        attrs["user_notes"] = contact.status
        attrs["decoded"] = "true"
        if contact.avatar is not None:
            attrs["thumbnail_base64"] = base64.b64encode(contact.avatar).decode("ascii")
        self.sink.report(unit)
        return unit

    def report_backup_notice(self, item: Item, main_item: Item) -> ReportUnit:
        """Emit the notice telling which main database a backup belongs to"""
        unit = ReportUnit(f"Backup from {main_item.path}".encode("utf-8"))
        unit.attributes["title"] = item.name
        unit.attributes["is_backup_from"] = main_item.global_id
        unit.attributes["backup_item"] = item.global_id
        self.sink.report(unit)
        return unit
