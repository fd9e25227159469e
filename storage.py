import copy
import json
import logging
import os
import shutil
import threading
from datetime import datetime

logger = logging.getLogger(__name__)

CONFIG_FILE = 'config.json'
USERS_FILE = 'users.json'
PLAYS_FILE = 'plays.json'
REQUESTS_FILE = 'requests.json'

# Documents that must be JSON lists; anything else is treated as corruption
LIST_DOCUMENTS = {USERS_FILE, PLAYS_FILE, REQUESTS_FILE}
# Documents backed up before every overwrite
BACKED_UP_DOCUMENTS = {CONFIG_FILE, USERS_FILE}
# Backups kept per document; older ones are pruned
MAX_BACKUPS = 10


class StorageError(Exception):
    """A document could not be read or written"""


class JsonDocumentStore:
    """
    File-backed JSON documents living in one data directory.

    Every read and write goes through a single re-entrant lock so a
    read-modify-write done under `store.lock` is not interleaved with
    another request's write.
    """

    def __init__(self, data_dir):
        self.data_dir = data_dir
        self.lock = threading.RLock()
        os.makedirs(self.data_dir, exist_ok=True)

    def path(self, name):
        return os.path.join(self.data_dir, name)

    def create_backup(self, name):
        """Create a timestamped backup of a document"""
        filename = self.path(name)
        if os.path.exists(filename):
            backup_path = f"{filename}.{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.bak"
            try:
                shutil.copy2(filename, backup_path)
                logger.info(f"💾 Backup created: {backup_path}")
                self.prune_backups(name)
                return backup_path
            except OSError as e:
                logger.error(f"💥 Backup creation failed: {e}")
        return None

    def list_backups(self, name):
        """Backups of a document, oldest first"""
        prefix = f"{name}."
        return sorted(
            entry for entry in os.listdir(self.data_dir)
            if entry.startswith(prefix) and entry.endswith('.bak')
        )

    def prune_backups(self, name, keep=MAX_BACKUPS):
        for entry in self.list_backups(name)[:-keep]:
            try:
                os.remove(self.path(entry))
                logger.debug(f"🧹 Old backup removed: {entry}")
            except OSError as e:
                logger.warning(f"⚠️ Could not remove old backup {entry}: {e}")

    def load(self, name, default_data, strict=False):
        """
        Load a document with corruption recovery; missing files are created from defaults.

        An unreadable file (permissions, I/O failure) falls back to the defaults
        unless `strict` is set, in which case StorageError is raised. Callers
        that write the result back must load strictly so a transient read
        failure never overwrites the stored document.
        """
        filename = self.path(name)
        with self.lock:
            if not os.path.exists(filename):
                self.save(name, default_data)
                return copy.deepcopy(default_data)
            try:
                with open(filename, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if name in LIST_DOCUMENTS and not isinstance(data, list):
                    raise json.JSONDecodeError(f"Invalid {name} format", filename, 0)
                return data
            except json.JSONDecodeError:
                logger.error(f"🚨 CORRUPTION: '{name}' corrupted. Auto-recovering...")
                backup_path = self.create_backup(name)
                if backup_path:
                    logger.info(f"🔒 Corrupted file backed up as: {backup_path}")
                self.save(name, default_data)
                logger.info("✅ Recovery complete. File reset to defaults.")
                return copy.deepcopy(default_data)
            except OSError as e:
                logger.error(f"💥 IO ERROR reading '{name}': {e}")
                if strict:
                    raise StorageError(f"Failed to read {name}: {e}") from e
                return copy.deepcopy(default_data)

    def save(self, name, data):
        """Save a document atomically; raises StorageError when it cannot be written"""
        filename = self.path(name)
        temp_filename = f"{filename}.tmp"
        with self.lock:
            try:
                payload = json.dumps(data, indent=4, ensure_ascii=False)

                if name in BACKED_UP_DOCUMENTS and os.path.exists(filename):
                    self.create_backup(name)

                with open(temp_filename, 'w', encoding='utf-8') as f:
                    f.write(payload)
                os.replace(temp_filename, filename)
                logger.debug(f"💾 File saved successfully: {name}")
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"💥 Save error for '{name}': {e}")
                if os.path.exists(temp_filename):
                    os.remove(temp_filename)
                raise StorageError(f"Failed to save {name}: {e}") from e

    def append(self, name, item):
        """Append one item to a list document and return the new length"""
        with self.lock:
            items = self.load(name, [], strict=True)
            items.append(item)
            self.save(name, items)
            return len(items)
