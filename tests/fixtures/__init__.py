# Test fixtures for the correlation core
from tests.fixtures.databases import (
    at as at,
    chat as chat,
    create_contacts_db as create_contacts_db,
    create_message_db as create_message_db,
    db_item as db_item,
    file_item as file_item,
    media as media,
    text as text,
)
from tests.fixtures.fakes import (
    FakeSearchIndex as FakeSearchIndex,
    RecordingFallbackViewer as RecordingFallbackViewer,
    RecordingSink as RecordingSink,
    SqliteDecoder as SqliteDecoder,
    StubLinkExtractor as StubLinkExtractor,
)
from tests.fixtures.media_samples import (
    MEDIA_KEY as MEDIA_KEY,
    MINIMAL_JPEG as MINIMAL_JPEG,
    encrypt_media as encrypt_media,
    sha256_hex as sha256_hex,
    zero_padded as zero_padded,
)
