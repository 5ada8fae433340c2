"""
Tagged-data codec: the JOB / RES / CHAT application protocol carried in
null-data (OP_FALSE OP_RETURN) outputs.

    JOB  <prompt>
    RES  <request txid bytes, reversed> <result | HASH:<sha256 hex>>
    CHAT <prompt> <result>

Pure functions. Decoding never raises on arbitrary input: anything that is not
a well-formed data output with a known tag decodes to None.
"""

import hashlib
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

TAG_JOB = "JOB"
TAG_RES = "RES"
TAG_CHAT = "CHAT"
KNOWN_TAGS = (TAG_JOB, TAG_RES, TAG_CHAT)

# Results above this many bytes go on-chain as a hash placeholder only
MAX_RESULT_BYTES = 50_000
HASH_PREFIX = "HASH:"

OP_FALSE = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_RETURN = 0x6A

NULLDATA_TYPE = "nulldata"


@dataclass
class TaggedData:
    """A decoded data output."""
    tag: str
    fields: List[bytes] = field(default_factory=list)

    def text(self, index: int) -> str:
        return self.fields[index].decode("utf-8", errors="replace")


@dataclass
class ResponseRef:
    """A decoded RES output, back-reference already in display order."""
    request_txid: str
    payload: str

    @property
    def is_hashed(self) -> bool:
        return self.payload.startswith(HASH_PREFIX)


def _push(data: bytes) -> bytes:
    n = len(data)
    if n < OP_PUSHDATA1:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + n.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + n.to_bytes(4, "little") + data


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def encode(tag: str, fields: Sequence[Union[str, bytes]]) -> str:
    """Build a null-data locking script (hex): OP_FALSE OP_RETURN <tag> <fields...>."""
    script = bytes([OP_FALSE, OP_RETURN]) + _push(_as_bytes(tag))
    for f in fields:
        script += _push(_as_bytes(f))
    return script.hex()


def _read_pushes(script: bytes, start: int) -> Optional[List[bytes]]:
    """Collect push payloads from script[start:]. None if a push runs past the end."""
    pushes: List[bytes] = []
    i = start
    n = len(script)
    while i < n:
        op = script[i]
        i += 1
        if 0 < op < OP_PUSHDATA1:
            size = op
        elif op == OP_PUSHDATA1:
            if i + 1 > n:
                return None
            size = script[i]
            i += 1
        elif op == OP_PUSHDATA2:
            if i + 2 > n:
                return None
            size = int.from_bytes(script[i:i + 2], "little")
            i += 2
        elif op == OP_PUSHDATA4:
            if i + 4 > n:
                return None
            size = int.from_bytes(script[i:i + 4], "little")
            i += 4
        else:
            # OP_0 and other opcodes carry no payload
            continue
        if i + size > n:
            return None
        pushes.append(script[i:i + size])
        i += size
    return pushes


def decode_script(script_hex: str) -> Optional[TaggedData]:
    """Decode a locking script (hex). None unless it is a data output with a known tag."""
    try:
        script = bytes.fromhex(script_hex or "")
    except (TypeError, ValueError):
        return None
    if script[:2] == bytes([OP_FALSE, OP_RETURN]):
        start = 2
    elif script[:1] == bytes([OP_RETURN]):
        start = 1
    else:
        return None
    pushes = _read_pushes(script, start)
    if not pushes:
        return None
    try:
        tag = pushes[0].decode("utf-8")
    except UnicodeDecodeError:
        return None
    if tag not in KNOWN_TAGS:
        return None
    return TaggedData(tag=tag, fields=pushes[1:])


def decode(output: Any) -> Optional[TaggedData]:
    """
    Decode one output. Accepts raw script hex, a ledger output dict
    ({"scriptPubKey": {"type", "hex"}}) or a LedgerOutput model.
    """
    if isinstance(output, str):
        return decode_script(output)
    if isinstance(output, dict):
        spk = output.get("scriptPubKey") or {}
        if not isinstance(spk, dict):
            return None
        script_type, script_hex = spk.get("type"), spk.get("hex")
    else:
        spk = getattr(output, "script_pub_key", None)
        if spk is None:
            return None
        script_type, script_hex = spk.type, spk.hex
    if script_type != NULLDATA_TYPE or not isinstance(script_hex, str):
        return None
    return decode_script(script_hex)


def _iter_tagged(tx: Any, tag: str):
    outputs = tx.get("vout") if isinstance(tx, dict) else getattr(tx, "vout", None)
    for out in outputs or []:
        data = decode(out)
        if data is not None and data.tag == tag:
            yield data


# --- JOB ---

def encode_job(prompt: str) -> str:
    return encode(TAG_JOB, [prompt])


def extract_job_prompt(tx: Any) -> Optional[str]:
    """First JOB prompt found in a transaction's outputs, or None."""
    for data in _iter_tagged(tx, TAG_JOB):
        if data.fields:
            return data.text(0)
    return None


# --- RES ---

def onchain_result(result: str) -> Tuple[bytes, bool]:
    """Payload to put on-chain for a result, and whether it was replaced by its hash."""
    raw = result.encode("utf-8")
    if len(raw) > MAX_RESULT_BYTES:
        digest = hashlib.sha256(raw).hexdigest()
        return f"{HASH_PREFIX}{digest}".encode("utf-8"), True
    return raw, False


def reverse_txid(txid: str) -> bytes:
    """Display-order hex txid → raw bytes in wire (little-endian) order."""
    return bytes.fromhex(txid)[::-1]


def encode_response(request_txid: str, result: str) -> Tuple[str, bool, str]:
    """
    RES output for a settlement.

    Returns (script_hex, is_hashed, payload_text) where payload_text is what
    actually went on-chain.
    """
    payload, is_hashed = onchain_result(result)
    script_hex = encode(TAG_RES, [reverse_txid(request_txid), payload])
    return script_hex, is_hashed, payload.decode("utf-8")


def decode_response(data: TaggedData) -> Optional[ResponseRef]:
    if data.tag != TAG_RES or len(data.fields) < 2 or len(data.fields[0]) != 32:
        return None
    return ResponseRef(request_txid=data.fields[0][::-1].hex(), payload=data.text(1))


def extract_response(tx: Any) -> Optional[ResponseRef]:
    for data in _iter_tagged(tx, TAG_RES):
        ref = decode_response(data)
        if ref is not None:
            return ref
    return None


# --- CHAT ---

def encode_chat(prompt: str, result: str) -> Tuple[str, bool]:
    payload, is_hashed = onchain_result(result)
    return encode(TAG_CHAT, [prompt, payload]), is_hashed


def extract_chat(tx: Any) -> Optional[Tuple[str, str]]:
    for data in _iter_tagged(tx, TAG_CHAT):
        if len(data.fields) >= 2:
            return data.text(0), data.text(1)
    return None
