from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from invoicing import config
from invoicing.models.client import Client
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


class ClientService:
    def __init__(self, data_dir: Optional[os.PathLike | str] = None):
        base = Path(data_dir) if data_dir else config.data_dir()
        self.repo = JsonRepository(base / "clients.json", entity_name="client")

    def list_clients(self, user_id: Optional[str] = None) -> List[Client]:
        out: List[Client] = []
        for d in self.repo.list_all():
            if user_id is not None and d.get("user_id") != user_id:
                continue
            try:
                out.append(Client(**d))
            except ValidationError:
                # invalid rows must not break listing
                logger.warning("Skipping invalid client row %s", d.get("id"))
        return out

    def get_client(self, client_id: str) -> Optional[Client]:
        d = self.repo.get_by_id(client_id)
        if d is None:
            return None
        try:
            return Client(**d)
        except ValidationError:
            logger.warning("Stored client %s is invalid", client_id)
            return None

    def client_names(self, user_id: Optional[str] = None) -> Dict[str, str]:
        """id -> display name, company name first."""
        return {c.id: c.company_name or c.name for c in self.list_clients(user_id)}

    def add_client(self, client: Client) -> Client:
        self.repo.add(client.model_dump(mode="json"))
        return client

    def update_client(self, client: Client) -> Client:
        self.repo.update(client.model_dump(mode="json"))
        return client

    def delete_client(self, client_id: str) -> bool:
        return self.repo.delete(client_id)
