# services/key_service.py
import logging

from sqlalchemy.orm import Session

from keyledger.models.orm.key import KeyORM
from keyledger.models.schemas.key import KeyCreatedModel, KeyCreateModel
from keyledger.repositories.key_repo import KeyRepository

logger = logging.getLogger(__name__)


class KeyRegistry:
    """Catalog of keys and their active/retired status."""

    def __init__(self, db: Session):
        self.key_repo = KeyRepository(db)

    def key_exists(self, key_id: int) -> bool:
        return self.key_repo.get_key(key_id) is not None

    def is_active_key(self, key_id: int) -> bool:
        key = self.key_repo.get_key(key_id)
        return key is not None and key.is_active

    def list_active_keys(self) -> list[KeyORM]:
        return self.key_repo.list_active_keys()

    def create_key(self, key_data: KeyCreateModel) -> KeyCreatedModel:
        key = self.key_repo.create_key(key_data.identifier)
        logger.info("Key %s registered as %r", key.id, key.identifier)
        return KeyCreatedModel(id=key.id, identifier=key.identifier)

    def retire_key(self, key_id: int) -> None:
        """
        Retires a key. Raises KeyNotFound for missing or already retired keys
        and KeyStillAssigned while the key is out.
        """
        self.key_repo.retire_key(key_id)
        logger.info("Key %s retired", key_id)
