"""Catalog of the tables Lily can export and the tasks that produce them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence


@dataclass(frozen=True)
class Table:
    """Declares which Lily task writes a table and for which schema version."""

    name: str
    task: str
    schema: int
    model: tuple[str, ...] | None = None


CONSENSUS_TASK = "consensus"
"""Task that is always included in a walk so its task set stays stable."""

DEFAULT_TABLES: Sequence[Table] = (
    Table("actor_states", "actorstatesraw", 1),
    Table("actors", "actorstatesraw", 1),
    Table(
        "block_headers",
        "blocks",
        1,
        model=("height", "cid", "parent_weight", "parent_state_root", "miner", "timestamp", "win_count"),
    ),
    Table("block_messages", "messages", 1),
    Table("block_parents", "blocks", 1),
    Table("chain_consensus", CONSENSUS_TASK, 1, model=("height", "parent_state_root", "parent_tip_set", "tip_set")),
    Table("chain_economics", "chaineconomics", 1),
    Table("chain_powers", "actorstatespower", 1),
    Table("chain_rewards", "actorstatesreward", 1),
    Table("derived_gas_outputs", "messages", 1),
    Table("drand_block_entries", "blocks", 1),
    Table("id_addresses", "actorstatesinit", 1),
    Table("internal_messages", "implicitmessage", 1),
    Table("internal_parsed_messages", "implicitmessage", 1),
    Table("market_deal_proposals", "actorstatesmarket", 1),
    Table("market_deal_states", "actorstatesmarket", 1),
    Table("message_gas_economy", "messages", 1),
    Table("messages", "messages", 1),
    Table("miner_current_deadline_infos", "actorstatesminer", 1),
    Table("miner_fee_debts", "actorstatesminer", 1),
    Table("miner_infos", "actorstatesminer", 1),
    Table("miner_locked_funds", "actorstatesminer", 1),
    Table("miner_pre_commit_infos", "actorstatesminer", 1),
    Table("miner_sector_deals", "actorstatesminer", 1),
    Table("miner_sector_events", "actorstatesminer", 1),
    # v7 variant is written for network version 15 onwards
    Table("miner_sector_infos_v7", "actorstatesminer", 1),
    Table("miner_sector_infos", "actorstatesminer", 1),
    Table("miner_sector_posts", "actorstatesminer", 1),
    Table("multisig_approvals", "msapprovals", 1),
    Table("multisig_transactions", "actorstatesmultisig", 1),
    Table("parsed_messages", "messages", 1),
    Table("power_actor_claims", "actorstatespower", 1),
    Table("receipts", "messages", 1),
    Table("verified_registry_verifiers", "actorstatesverifreg", 1),
    Table("verified_registry_verified_clients", "actorstatesverifreg", 1),
)


class TableCatalog:
    """Read-only registry of :class:`Table` descriptors.

    The catalog is built once and passed explicitly to the components that need
    it. Declaration order is preserved by every query.
    """

    def __init__(self, tables: Iterable[Table]) -> None:
        self._tables: tuple[Table, ...] = tuple(tables)
        self._by_name: dict[str, Table] = {}
        for table in self._tables:
            if table.name in self._by_name:
                raise ValueError(f"Duplicate table '{table.name}' in catalog")
            self._by_name[table.name] = table

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Table | None:
        return self._by_name.get(name)

    def by_name(self, name: str) -> Table:
        try:
            return self._by_name[name]
        except KeyError as exc:
            raise KeyError(f"Unknown table '{name}'") from exc

    def for_schema(self, schema: int) -> list[Table]:
        return [table for table in self._tables if table.schema == schema]

    def select(self, schema: int, allowed: Iterable[Table | str]) -> list[Table]:
        """Return the tables of ``schema`` whose names appear in ``allowed``."""

        names = {item.name if isinstance(item, Table) else item for item in allowed}
        return [table for table in self.for_schema(schema) if table.name in names]


DEFAULT_CATALOG = TableCatalog(DEFAULT_TABLES)

__all__ = ["CONSENSUS_TASK", "DEFAULT_CATALOG", "DEFAULT_TABLES", "Table", "TableCatalog"]
