"""
Mapping of Solana `jsonParsed` RPC payloads onto ledger DTOs.

Only two instruction shapes survive parsing: system-program transfers and
SPL token transfers. Anything else, including instructions the node could
not decode, is dropped here so downstream code only sees the closed set.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from flowtracer.core.dto import (
    SPL_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_IDS,
    Instruction,
    NativeTransfer,
    ParsedTransaction,
    SignatureInfo,
    TokenTransfer,
)


TOKEN_TRANSFER_TYPES = frozenset({"transfer", "transferChecked"})
AUTHORITY_KEYS = ("owner", "sourceOwner", "authority", "multisigAuthority")


def _int(val: Any) -> Optional[int]:
    if val is None or isinstance(val, bool):
        return None
    try:
        return int(str(val))
    except ValueError:
        return None


def _program_id(ins: Dict[str, Any]) -> str:
    return str(ins.get("programId") or "")


def parse_instruction(ins: Any) -> Optional[Instruction]:
    if not isinstance(ins, dict):
        return None
    parsed = ins.get("parsed")
    if not isinstance(parsed, dict):
        return None
    info = parsed.get("info")
    if not isinstance(info, dict):
        return None

    program = ins.get("program")
    program_id = _program_id(ins)
    ins_type = parsed.get("type")

    if (program == "system" or program_id == SYSTEM_PROGRAM_ID) and ins_type == "transfer":
        lamports = _int(info.get("lamports"))
        source = info.get("source")
        destination = info.get("destination")
        if lamports is None or not source or not destination:
            return None
        return NativeTransfer(source=source, destination=destination, lamports=lamports)

    is_token = program in ("spl-token", "spl-token-2022") or program_id in TOKEN_PROGRAM_IDS
    if is_token and ins_type in TOKEN_TRANSFER_TYPES:
        amount = _int(info.get("amount"))
        if amount is None:
            amount = _int((info.get("tokenAmount") or {}).get("amount"))
        destination = info.get("destination") or info.get("account")
        if amount is None or not destination:
            return None
        authorities = tuple(info[k] for k in AUTHORITY_KEYS if info.get(k))
        return TokenTransfer(
            authorities=authorities,
            destination=destination,
            amount_raw=amount,
            program_id=program_id or SPL_TOKEN_PROGRAM_ID,
            destination_owner=info.get("destinationOwner") or None,
            mint=info.get("mint") or None,
        )

    return None


def parse_transaction(signature: str, result: Any) -> Optional[ParsedTransaction]:
    if not isinstance(result, dict):
        return None
    tx = result.get("transaction")
    if not isinstance(tx, dict):
        return None

    message = tx.get("message") or {}
    raw_instructions = message.get("instructions") or []
    instructions: List[Instruction] = []
    for raw in raw_instructions:
        parsed = parse_instruction(raw)
        if parsed is not None:
            instructions.append(parsed)

    meta = result.get("meta") or {}
    logs = [str(l) for l in (meta.get("logMessages") or []) if l is not None]

    return ParsedTransaction(
        signature=signature,
        instructions=tuple(instructions),
        log_messages=tuple(logs),
        block_time=_int(result.get("blockTime")),
        slot=_int(result.get("slot")),
    )


def parse_signature_page(rows: Any) -> List[SignatureInfo]:
    if not isinstance(rows, list):
        return []
    out: List[SignatureInfo] = []
    for r in rows:
        if not isinstance(r, dict) or not r.get("signature"):
            continue
        out.append(
            SignatureInfo(
                signature=str(r["signature"]),
                block_time=_int(r.get("blockTime")),
                failed=r.get("err") is not None,
            )
        )
    return out
