from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from decimal import Decimal
from typing import Any, Protocol, TypeVar

from loguru import logger
from pytoniq_core import Cell, Slice

from app.core.networks import NetworkName
from app.domain import Market, MarketStatus, Participant, ParticipantAction
from app.domain.protocol import (
    OP_CHALLENGE,
    OP_PROPOSE,
    OP_TRANSFER_NOTIFICATION,
    challenge_period,
    from_nano,
)
from app.services.bonds import bond_at_level
from app.services.lifecycle import detect_category

from .errors import LedgerShapeError
from .types import (
    BondTransfer,
    LifecycleSnapshot,
    MarketIdentity,
    ProposalSnapshot,
    QuestionText,
    RewardClaim,
    VetoStatus,
)

T = TypeVar("T")


class CellDecoder(Protocol):
    """Turns serialized ledger cells into addresses, text and bond transfers."""

    def decode_address(self, cell_hex: str) -> str: ...

    def decode_strings(self, cell_hex: str) -> list[str]: ...

    def decode_bond_transfer(self, body_hex: str) -> BondTransfer: ...


class BocCellDecoder:
    """Reads bag-of-cells payloads with pytoniq-core.

    Addresses and transfer bodies are parsed bit by bit. Question cells are
    scanned for printable runs because their layout differs between contract
    versions.
    """

    min_length = 6

    def _read(self, cell_hex: str, reader: Callable[[Slice], T]) -> T:
        try:
            return reader(Cell.one_from_boc(bytes.fromhex(cell_hex)).begin_parse())
        except Exception as exc:  # noqa: BLE001
            raise LedgerShapeError(f"undecodable cell: {exc}") from exc

    def decode_address(self, cell_hex: str) -> str:
        address = self._read(cell_hex, lambda cs: cs.load_address())
        if address is None:
            raise LedgerShapeError("cell holds an empty address")
        return address.to_str(is_user_friendly=False)

    def decode_bond_transfer(self, body_hex: str) -> BondTransfer:
        def read(cs: Slice) -> tuple[int, int, Any, int, bool]:
            op = cs.load_uint(32)
            cs.load_uint(64)  # query id
            amount = cs.load_coins()
            sender = cs.load_address()
            payload = cs.load_ref().begin_parse() if cs.load_bit() else cs
            action = payload.load_uint(32)
            payload.load_uint(64)  # query id
            return op, amount, sender, action, bool(payload.load_bit())

        op, amount, sender, action, answer = self._read(body_hex, read)
        if op != OP_TRANSFER_NOTIFICATION:
            raise LedgerShapeError(f"body is not a transfer notification (op={op:#x})")
        return BondTransfer(
            op=action,
            sender=sender.to_str(is_user_friendly=False) if sender is not None else "",
            amount=from_nano(amount or 0),
            answer=answer,
        )

    def decode_strings(self, cell_hex: str) -> list[str]:
        try:
            data = bytes.fromhex(cell_hex)
        except ValueError as exc:
            raise LedgerShapeError("cell payload is not valid hex") from exc

        strings: list[str] = []
        current: list[str] = []
        for byte in [*data, 0]:
            if 32 <= byte <= 126:
                current.append(chr(byte))
                continue
            if len(current) >= self.min_length:
                text = "".join(current)
                # A length/type prefix byte can land in the printable range.
                if len(text) > 10 and text[0].islower():
                    text = text[1:]
                strings.append(text.strip())
            current = []
        return strings


def _as_stack(payload: Any, *, minimum: int, method: str) -> list[Any]:
    if not isinstance(payload, Mapping):
        raise LedgerShapeError(f"{method}: reply is not an object")
    if payload.get("success") is False:
        raise LedgerShapeError(f"{method}: get-method failed (exit_code={payload.get('exit_code')})")
    stack = payload.get("stack")
    if not isinstance(stack, list) or len(stack) < minimum:
        raise LedgerShapeError(f"{method}: expected at least {minimum} stack entries")
    return stack


def parse_num(entry: Any) -> int:
    """Parse a ``num`` stack entry (hex string) or a plain decimal value."""

    if isinstance(entry, Mapping):
        raw = entry.get("num")
        if raw is None:
            raise LedgerShapeError(f"stack entry has no numeric value: {entry!r}")
        text = str(raw).strip().lower()
        negative = text.startswith("-")
        if negative:
            text = text[1:]
        if not text.startswith("0x"):
            text = "0x" + text
        try:
            value = int(text, 16)
        except ValueError as exc:
            raise LedgerShapeError(f"invalid numeric stack entry: {raw!r}") from exc
        return -value if negative else value
    if isinstance(entry, bool):
        return int(entry)
    if isinstance(entry, int):
        return entry
    try:
        return int(str(entry), 10)
    except (TypeError, ValueError) as exc:
        raise LedgerShapeError(f"invalid numeric stack entry: {entry!r}") from exc


def parse_bool(entry: Any) -> bool:
    return parse_num(entry) != 0


def _optional(parse, entry: Any):
    if entry is None or (isinstance(entry, Mapping) and entry.get("type") == "null"):
        return None
    try:
        return parse(entry)
    except LedgerShapeError:
        return None


def _cell_hex(entry: Mapping[str, Any]) -> str | None:
    for key in ("cell", "slice"):
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_address(entry: Any, decoder: CellDecoder) -> str:
    if isinstance(entry, str) and entry:
        return entry
    if isinstance(entry, Mapping):
        address = entry.get("address")
        if isinstance(address, str) and address:
            return address
        cell_hex = _cell_hex(entry)
        if cell_hex:
            return decoder.decode_address(cell_hex)
    raise LedgerShapeError(f"stack entry is not an address: {entry!r}")


def parse_market_count(payload: Any) -> int:
    stack = _as_stack(payload, minimum=1, method="get_next_instance_id")
    return max(0, parse_num(stack[0]))


def parse_identity(payload: Any, index: int, decoder: CellDecoder) -> MarketIdentity:
    stack = _as_stack(payload, minimum=3, method="get_instance")
    address = parse_address(stack[0], decoder)
    try:
        creator = parse_address(stack[2], decoder)
    except LedgerShapeError:
        creator = ""
    return MarketIdentity(
        index=index,
        address=address,
        created_at=parse_num(stack[1]),
        creator=creator,
    )


def parse_lifecycle(payload: Any) -> LifecycleSnapshot:
    stack = _as_stack(payload, minimum=6, method="get_instance_state")
    return LifecycleSnapshot(
        state=parse_num(stack[1]),
        escalation_count=parse_num(stack[2]),
        total_bonds=from_nano(parse_num(stack[3])),
        resolution_deadline=parse_num(stack[5]),
    )


def parse_question(payload: Any, decoder: CellDecoder) -> QuestionText:
    stack = _as_stack(payload, minimum=1, method="get_query")
    entry = stack[0]
    if isinstance(entry, str):
        return QuestionText(question=entry)
    if not isinstance(entry, Mapping):
        raise LedgerShapeError("get_query: unexpected stack entry")
    cell_hex = _cell_hex(entry)
    if not cell_hex:
        raise LedgerShapeError("get_query: stack entry carries no cell")
    return split_question_strings(decoder.decode_strings(cell_hex))


def split_question_strings(strings: Sequence[str]) -> QuestionText:
    """Assign decoded text runs to question, rules, and resolution source."""

    question = rules = source = ""
    for text in strings:
        if not question and "?" in text and len(text) < 300:
            question = text
        elif question and not rules and len(text) > 20:
            rules = text
        elif question and rules and 3 < len(text) < 150:
            source = text
            break

    if not question and strings:
        question = strings[0]
        rules = strings[1] if len(strings) > 1 else ""
        source = strings[2] if len(strings) > 2 else ""
    if not question:
        raise LedgerShapeError("get_query: no question text found")
    return QuestionText(question=question, rules=rules, resolution_source=source)


def parse_proposal(payload: Any) -> ProposalSnapshot:
    stack = _as_stack(payload, minimum=3, method="get_current_proposal")
    answer = _optional(parse_bool, stack[1])
    raw_bond = _optional(parse_num, stack[2])
    proposed_at = _optional(parse_num, stack[3]) if len(stack) > 3 else None
    deadline = _optional(parse_num, stack[4]) if len(stack) > 4 else None
    return ProposalSnapshot(
        answer=answer,
        bond=from_nano(raw_bond) if raw_bond is not None else None,
        proposed_at=proposed_at,
        challenge_deadline=deadline if deadline and deadline > 0 else None,
    )


def parse_veto_guard(payload: Any, decoder: CellDecoder) -> str | None:
    stack = _as_stack(payload, minimum=1, method="get_veto_guard")
    entry = stack[0]
    if entry is None or (isinstance(entry, Mapping) and entry.get("type") == "null"):
        return None
    return parse_address(entry, decoder)


def parse_veto_status(payload: Any) -> VetoStatus:
    stack = _as_stack(payload, minimum=4, method="get_veto_status")
    return VetoStatus(
        veto_end=parse_num(stack[0]),
        current_answer=_optional(parse_bool, stack[1]),
        veto_count=parse_num(stack[2]),
        support_count=parse_num(stack[3]),
    )


def parse_reward_claim(payload: Any, decoder: CellDecoder, *, method: str) -> RewardClaim:
    stack = _as_stack(payload, minimum=3, method=method)
    try:
        account = parse_address(stack[0], decoder)
    except LedgerShapeError:
        account = None
    raw_amount = _optional(parse_num, stack[1])
    return RewardClaim(
        account=account,
        amount=from_nano(raw_amount) if raw_amount is not None else None,
        claimed=_optional(parse_bool, stack[2]),
    )


def _op_code(value: Any) -> int | None:
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value:
        try:
            return int(value, 16)
        except ValueError:
            return None
    return None


def parse_bond_transfers(payload: Any, decoder: CellDecoder) -> list[BondTransfer]:
    """Pick propose/challenge bond payments out of an account's transaction list.

    Other traffic, failed transactions and bodies that do not decode are
    skipped. The result is oldest first.
    """

    transactions = payload.get("transactions") if isinstance(payload, Mapping) else None
    if not isinstance(transactions, list):
        raise LedgerShapeError("transactions: reply has no transaction list")

    transfers: list[BondTransfer] = []
    # Replies list the newest transaction first.
    for tx in reversed(transactions):
        if not isinstance(tx, Mapping) or tx.get("success") is False:
            continue
        message = tx.get("in_msg")
        if not isinstance(message, Mapping):
            continue
        source = message.get("source")
        source_address = source.get("address") if isinstance(source, Mapping) else None
        body = message.get("raw_body")
        if not source_address or not isinstance(body, str) or not body:
            continue
        if _op_code(message.get("op_code")) != OP_TRANSFER_NOTIFICATION:
            continue
        try:
            transfer = decoder.decode_bond_transfer(body)
        except LedgerShapeError as exc:
            logger.debug("Skipping transaction {}: {}", tx.get("hash"), exc)
            continue
        if transfer.op not in (OP_PROPOSE, OP_CHALLENGE):
            continue
        transfers.append(
            replace(
                transfer,
                sender=transfer.sender or source_address,
                timestamp=int(tx.get("utime") or 0),
                tx_hash=tx.get("hash"),
            )
        )
    transfers.sort(key=lambda transfer: transfer.timestamp)
    return transfers


def build_participants(market_address: str, transfers: Sequence[BondTransfer]) -> list[Participant]:
    """Number bond payments by escalation level: the proposal is level 0, each challenge the next."""

    participants: list[Participant] = []
    level = 0
    for transfer in transfers:
        if transfer.op == OP_CHALLENGE:
            level += 1
            action = ParticipantAction.CHALLENGE
        else:
            action = ParticipantAction.PROPOSE
        participants.append(
            Participant(
                market_address=market_address,
                participant_address=transfer.sender,
                action=action,
                answer=transfer.answer,
                bond_amount=transfer.amount if transfer.amount > 0 else bond_at_level(level),
                escalation_level=level,
                timestamp=transfer.timestamp,
                tx_hash=transfer.tx_hash,
            )
        )
    return participants


def build_market(
    identity: MarketIdentity,
    lifecycle: LifecycleSnapshot,
    question: QuestionText | None,
    *,
    network: NetworkName,
    proposal: ProposalSnapshot | None = None,
    veto_guard_address: str | None = None,
    veto: VetoStatus | None = None,
    rebate: RewardClaim | None = None,
    resolver: RewardClaim | None = None,
) -> Market:
    """Fold the raw replies gathered for one market into a :class:`Market`."""

    status = MarketStatus.from_ledger_state(lifecycle.state)
    text = question or QuestionText(question=f"Market #{identity.index}")

    current_bond: Decimal | None = lifecycle.total_bonds
    proposed_outcome = proposed_at = challenge_deadline = None
    if proposal is not None:
        proposed_outcome = proposal.answer
        if proposal.bond is not None:
            current_bond = proposal.bond
        proposed_at = proposal.proposed_at
        challenge_deadline = proposal.challenge_deadline
        if challenge_deadline is None and proposed_at is not None:
            challenge_deadline = proposed_at + challenge_period(lifecycle.escalation_count)

    market = Market(
        id=identity.index,
        address=identity.address,
        network=network,
        question=text.question,
        rules=text.rules or None,
        resolution_source=text.resolution_source or None,
        resolution_deadline=lifecycle.resolution_deadline,
        created_at=identity.created_at,
        creator=identity.creator or (rebate.account if rebate and rebate.account else ""),
        status=status,
        category=detect_category(text.question),
        total_bonds=lifecycle.total_bonds,
        proposed_outcome=proposed_outcome,
        current_bond=current_bond,
        escalation_count=lifecycle.escalation_count,
        proposed_at=proposed_at,
        challenge_deadline=challenge_deadline,
        veto_guard_address=veto_guard_address,
    )
    if veto is not None:
        market.veto_end = veto.veto_end
        market.current_answer = veto.current_answer
        market.veto_count = veto.veto_count
        market.support_count = veto.support_count
    if status is MarketStatus.RESOLVED and market.current_answer is None:
        market.current_answer = proposed_outcome
    if rebate is not None:
        market.rebate_creator = rebate.account
        market.rebate_amount = rebate.amount
        market.rebate_claimed = rebate.claimed
    if resolver is not None:
        market.resolver_address = resolver.account
        market.resolver_reward = resolver.amount
        market.resolver_claimed = resolver.claimed
    return market


__all__ = [
    "BocCellDecoder",
    "CellDecoder",
    "build_market",
    "build_participants",
    "parse_address",
    "parse_bond_transfers",
    "parse_bool",
    "parse_identity",
    "parse_lifecycle",
    "parse_market_count",
    "parse_num",
    "parse_proposal",
    "parse_question",
    "parse_reward_claim",
    "parse_veto_guard",
    "parse_veto_status",
    "split_question_strings",
]
