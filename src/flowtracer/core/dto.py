from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
SPL_TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEh9bSTBz2T9SxH3hszMpyyZHPv9"
TOKEN_PROGRAM_IDS = frozenset({SPL_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID})


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    block_time: Optional[int] = None     # unix seconds, None when the node has no timestamp
    failed: bool = False


@dataclass(frozen=True)
class NativeTransfer:
    source: str
    destination: str
    lamports: int           # native value in minor units (raw)


@dataclass(frozen=True)
class TokenTransfer:
    authorities: Tuple[str, ...]        # owner / sourceOwner / authority / multisigAuthority
    destination: str                    # destination token account
    amount_raw: int                     # raw units (before decimals)
    program_id: str
    destination_owner: Optional[str] = None
    mint: Optional[str] = None


Instruction = Union[NativeTransfer, TokenTransfer]


@dataclass(frozen=True)
class ParsedTransaction:
    signature: str
    instructions: Tuple[Instruction, ...] = field(default_factory=tuple)
    log_messages: Tuple[str, ...] = field(default_factory=tuple)
    block_time: Optional[int] = None
    slot: Optional[int] = None


@dataclass(frozen=True)
class LogNotification:
    address: str
    signature: str
