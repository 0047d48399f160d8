# election_ledger/audit/audit_logger.py

import os
import json
import hashlib
import base64
import logging
from collections import deque
from datetime import datetime, timezone
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization

# Append-only audit trail of ledger events, with hash chaining and Ed25519
# signatures. In buffered mode entries queue up in memory and are written by
# flush(); the hash chain is extended as soon as an entry is recorded.

logger = logging.getLogger(__name__)

KEY_FILE = 'audit_signing_key.pem'


class AuditLogger:
    def __init__(self, log_dir='logs', buffered=False, signing_key=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.key_file = os.path.join(log_dir, KEY_FILE)
        self.previous_hash = None
        self.buffered = buffered
        self.pending = deque()

        os.makedirs(log_dir, exist_ok=True)

        self.signing_key = signing_key or self._load_or_create_signing_key()
        self._load_previous_hash()

    def _load_or_create_signing_key(self):
        if os.path.exists(self.key_file):
            with open(self.key_file, 'rb') as f:
                return serialization.load_pem_private_key(f.read(), password=None)
        key = Ed25519PrivateKey.generate()
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption())
        fd = os.open(self.key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'wb') as f:
            f.write(pem)
        return key

    def _load_previous_hash(self):
        if os.path.exists(self.log_file):
            with open(self.log_file, 'r') as f:
                lines = [line for line in f if line.strip()]
                if lines:
                    try:
                        last_entry = json.loads(lines[-1])
                        self.previous_hash = last_entry.get('hash')
                    except ValueError:
                        logger.warning("Last audit entry in %s is not valid JSON", self.log_file)
                        self.previous_hash = None

    def log_security_event(self, event_type, data, user_id=None):
        try:
            timestamp = datetime.now(timezone.utc).isoformat()
            log_entry = {
                "timestamp": timestamp,
                "event_type": event_type,
                "data": data,
                "user_id": user_id,
                "previous_hash": self.previous_hash,
            }
            entry_json = json.dumps(log_entry, sort_keys=True)
            entry_hash = hashlib.sha256(entry_json.encode()).hexdigest()
            log_entry['hash'] = entry_hash

            signature = self.signing_key.sign(entry_json.encode())
            log_entry['signature'] = base64.b64encode(signature).decode()

            self.pending.append(json.dumps(log_entry))
            self.previous_hash = entry_hash
            if not self.buffered:
                self.flush()
        except Exception as e:
            # the audit trail must never break a ledger operation
            logger.error("Audit log error: %s", e)

    def flush(self):
        if not self.pending:
            return 0
        written = 0
        try:
            with open(self.log_file, 'a') as f:
                while self.pending:
                    f.write(self.pending[0] + "\n")
                    self.pending.popleft()
                    written += 1
        except OSError as e:
            logger.error("Audit log flush to %s failed: %s", self.log_file, e)
        return written

    def verify_log_integrity(self):
        if not os.path.exists(self.log_file):
            return True
        previous_hash = None
        public_key = self.signing_key.public_key()
        try:
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    log_entry = json.loads(line)
                    if log_entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(log_entry['signature'])
                    entry_copy = dict(log_entry)
                    entry_copy.pop('signature')
                    entry_hash = entry_copy.pop('hash')
                    entry_json = json.dumps(entry_copy, sort_keys=True).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
        except (ValueError, KeyError, TypeError, InvalidSignature):
            return False
        return True
