#!/usr/bin/env python3
"""
Content-type tags exchanged with the surrounding extraction pipeline.

Input tags identify the artifacts this core accepts; output tags label the
report units it produces.
"""

# Artifacts handed in by the pipeline
ACCOUNT_ANDROID = "application/x-whatsapp-user-xml"
ACCOUNT_IOS = "application/x-whatsapp-user-plist"
MSG_STORE = "application/x-whatsapp-db"
MSG_STORE_TERMINAL = "application/x-whatsapp-db-f"
CONTACTS_ANDROID = "application/x-whatsapp-wadb"
CHAT_STORAGE = "application/x-whatsapp-chatstorage"
CONTACTS_IOS = "application/x-whatsapp-contactsv2"

# Report units
CHAT = "application/x-whatsapp-chat"
CONTACT = "contact/x-whatsapp-contact"
MESSAGE = "message/x-whatsapp-message"
ATTACHMENT = "message/x-whatsapp-attachment"
CALL = "call/x-whatsapp-call"
ACCOUNT = "application/x-whatsapp-account"

# Index file names of the account-configuration artifacts
ANDROID_ACCOUNT_FILE = "com.whatsapp_preferences.xml"
IOS_ACCOUNT_FILE = "group.net.whatsapp.WhatsApp.shared.plist"

SUPPORTED_TYPES = frozenset(
    {
        ACCOUNT_ANDROID,
        ACCOUNT_IOS,
        MSG_STORE,
        MSG_STORE_TERMINAL,
        CONTACTS_ANDROID,
        CHAT_STORAGE,
        CONTACTS_IOS,
    }
)
