from plugins.rentals.storage.store import (
    DocumentStore, MongoDocumentStore, LocalJsonStore, select_store, LOCAL_FALLBACK_LIMITATION,
)
