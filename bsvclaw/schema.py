"""
Data model for the job-queue protocol.

Contract: Requester broadcasts a tx with a JOB data output and a payment to the
agent → agent computes → agent broadcasts a RES tx that spends the payment
(minus fee) back to itself and back-references the request.

Persisted job records keep the established jobs.json field names
(jobTxid, resTxid, satsReceived, ...) through aliases.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Utxo(BaseModel):
    """A spendable output owned by one key."""

    txid: str = Field(..., description="Source transaction id (display order hex)")
    vout: int = Field(..., description="Output index in the source transaction")
    satoshis: int = Field(..., ge=0)
    script_hex: Optional[str] = Field(None, description="Locking script; None means P2PKH to the owner")

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


class OutputSpec(BaseModel):
    """An output to create: either a raw script (data outputs) or a payment to an address."""

    satoshis: int = Field(..., ge=0)
    script_hex: Optional[str] = None
    address: Optional[str] = None


class SignedTransaction(BaseModel):
    txid: str
    raw_hex: str
    inputs: List[Utxo] = Field(default_factory=list)
    outputs: List[OutputSpec] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.raw_hex) // 2


class Balance(BaseModel):
    confirmed: int = 0
    unconfirmed: int = 0

    @property
    def total(self) -> int:
        return self.confirmed + self.unconfirmed


class HistoryEntry(BaseModel):
    tx_hash: str
    height: Optional[int] = Field(None, description="Block height; 0/-1/None while unconfirmed")

    @property
    def confirmed(self) -> bool:
        return bool(self.height) and self.height > 0


class ScriptPubKey(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    hex: str = ""
    addresses: List[str] = Field(default_factory=list)


class LedgerOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    n: int
    satoshis: int
    script_pub_key: ScriptPubKey = Field(default_factory=ScriptPubKey)


class LedgerTransaction(BaseModel):
    """Transaction detail as returned by the ledger index."""

    txid: str
    vout: List[LedgerOutput] = Field(default_factory=list)

    def outputs_to(self, address: str) -> List[Utxo]:
        """Every output of this tx that pays `address`, as spendable UTXOs."""
        return [
            Utxo(txid=self.txid, vout=out.n, satoshis=out.satoshis, script_hex=out.script_pub_key.hex or None)
            for out in self.vout
            if address in out.script_pub_key.addresses
        ]


class JobRecordBase(BaseModel):
    """Fields shared by every processed job."""

    model_config = ConfigDict(populate_by_name=True)

    request_txid: str = Field(..., alias="jobTxid", description="Txid carrying the JOB request")
    prompt: str
    result: str = Field("", description="Full result text (kept locally even when hashed on-chain)")
    sats_received: int = Field(0, ge=0, alias="satsReceived")
    sats_kept: int = Field(0, ge=0, alias="satsKept")
    is_hashed: bool = Field(False, alias="isHashed")
    onchain_result: Optional[str] = Field(
        None, alias="onchainResult", description="Payload actually written on-chain when it differs from result"
    )
    timestamp: str = Field(default_factory=utc_now)


class SettledJob(JobRecordBase):
    status: Literal["settled"] = "settled"
    response_txid: str = Field(..., alias="resTxid")


class FailedJob(JobRecordBase):
    status: Literal["failed"] = "failed"
    response_txid: None = Field(None, alias="resTxid")
    error: str


JobRecord = Annotated[Union[SettledJob, FailedJob], Field(discriminator="status")]

_job_adapter = TypeAdapter(JobRecord)


def job_record_from_dict(data: Dict[str, Any]) -> Union[SettledJob, FailedJob]:
    """Parse a persisted record; records written before `status` existed are classified by resTxid."""
    data = dict(data)
    if "status" not in data:
        data["status"] = "settled" if data.get("resTxid") else "failed"
    if data["status"] == "failed":
        data["error"] = data.get("error") or "failed"
        data["resTxid"] = None
    return _job_adapter.validate_python(data)


def job_record_to_dict(record: Union[SettledJob, FailedJob]) -> Dict[str, Any]:
    return record.model_dump(by_alias=True)


class JobSummary(BaseModel):
    """Aggregates for the operator status view."""

    total: int = 0
    settled: int = 0
    failed: int = 0
    total_received: int = 0
    total_earned: int = 0


class ConversationEntry(BaseModel):
    """One exchange with one requester."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    result: Optional[str] = None
    job_txid: Optional[str] = Field(None, alias="jobTxid")
    res_txid: Optional[str] = Field(None, alias="resTxid")
    timestamp: str = Field(default_factory=utc_now)
    pending: bool = False
