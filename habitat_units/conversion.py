"""
Conversion Inference Engine

The register records each site's baseline and improvement habitats but not
which baseline parcel became which improvement. This module infers a
plausible flow for the site flow diagram using a greedy, priority-ordered
heuristic (an approximation, not an optimal matching):

1. Condition upgrade: same habitat type, better condition
2. Artificial first: artificial / degraded supply drains into any demand
3. Same broad habitat: e.g. grassland supply into grassland demand
4. Lowest distinctiveness first: whatever supply is left, cheapest first
5. Retained: leftover supply becomes a "Retained" edge

Every step moves min(remaining supply, remaining demand). Supply and demand
only ever meet within the same module. Excess demand is reported as
unmatched, never as an edge.

Each pass is a pure function from InferenceState to InferenceState; node
orders are fixed up front so identical inputs give identical edges.

Usage:
    from habitat_units.conversion import infer_site_conversions

    result = infer_site_conversions(baseline_rows, improvement_rows, tables)
    result.edges, result.unmatched_demand
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .config import get_settings
from .models import (
    INTERVENTION_CREATION,
    INTERVENTION_ENHANCEMENT,
    INTERVENTION_RETAINED,
    RETAINED,
    CollatedHabitatRow,
    ConversionFlowEdge,
)
from .reference import ReferenceTables

logger = logging.getLogger(__name__)


NodeKey = Tuple[str, str, str]  # (module, type, condition)


# ================= Nodes and state =================

@dataclass(frozen=True)
class FlowNode:
    """Habitat of one type and condition within a site, aggregated over parcels"""
    module: str
    type: str
    condition: str
    size: float
    hus: float = 0.0
    broad_habitat: str = ""
    distinctiveness: Optional[str] = None
    distinctiveness_score: float = 0.0
    artificial: bool = False

    @property
    def key(self) -> NodeKey:
        return (self.module, self.type, self.condition)

    @property
    def hu_density(self) -> float:
        """HUs per unit size"""
        return self.hus / self.size if self.size > 0 else 0.0


@dataclass(frozen=True)
class InferenceState:
    """Remaining capacity of every node plus the edges emitted so far"""
    supply: Mapping[NodeKey, float]
    demand: Mapping[NodeKey, float]
    edges: Tuple[ConversionFlowEdge, ...] = ()


@dataclass(frozen=True)
class InferenceContext:
    """Fixed inputs shared by every pass"""
    tables: ReferenceTables
    tolerance: float
    supply_nodes: Tuple[FlowNode, ...]  # fixed supply order
    demand_nodes: Tuple[FlowNode, ...]  # fixed demand order


@dataclass(frozen=True)
class ConversionResult:
    """Flow edges for one site plus the demand no supply could cover"""
    supply_nodes: Tuple[FlowNode, ...]
    demand_nodes: Tuple[FlowNode, ...]
    edges: Tuple[ConversionFlowEdge, ...]
    unmatched_demand: Mapping[NodeKey, float]

    @property
    def transfers(self) -> Tuple[ConversionFlowEdge, ...]:
        return tuple(e for e in self.edges if not e.is_retained)

    @property
    def retained(self) -> Tuple[ConversionFlowEdge, ...]:
        return tuple(e for e in self.edges if e.is_retained)


def _node_order(node: FlowNode):
    return (-node.size, node.type, node.condition, node.module)


def nodes_from_rows(rows: Iterable[CollatedHabitatRow], tables: ReferenceTables) -> Tuple[FlowNode, ...]:
    """
    Flow nodes from one site's collated rows: one node per
    (module, type, condition), merging intervention sub-rows.
    """
    totals: Dict[NodeKey, List] = {}
    info: Dict[NodeKey, CollatedHabitatRow] = {}
    for row in rows:
        for sub_row in row.sub_rows:
            key = (row.module, row.type, sub_row.condition)
            size_hus = totals.setdefault(key, [0.0, 0.0])
            size_hus[0] += sub_row.size
            size_hus[1] += sub_row.hus
            info.setdefault(key, row)

    nodes = []
    for key, (size, hus) in totals.items():
        row = info[key]
        band = row.distinctiveness
        nodes.append(FlowNode(
            module=row.module,
            type=row.type,
            condition=key[2],
            size=size,
            hus=hus,
            broad_habitat=row.broad_habitat or tables.broad_habitat(row.type),
            distinctiveness=band,
            distinctiveness_score=tables.distinctiveness_scores.get(band, 0.0) if band else 0.0,
            artificial=tables.is_artificial(row.type),
        ))
    return tuple(sorted(nodes, key=_node_order))


# ================= Transfers =================

def intervention_label(source: FlowNode, target: FlowNode, tables: ReferenceTables) -> str:
    """
    Enhancement for the same type, or for a distinctiveness increase within
    the same broad habitat starting from Medium or above; Creation otherwise.
    """
    if source.type == target.type:
        return INTERVENTION_ENHANCEMENT
    medium = tables.distinctiveness_scores.get("Medium", 4.0)
    if (source.broad_habitat and source.broad_habitat == target.broad_habitat and
            source.distinctiveness_score >= medium and
            target.distinctiveness_score > source.distinctiveness_score):
        return INTERVENTION_ENHANCEMENT
    return INTERVENTION_CREATION


def transfer(state: InferenceState, source: FlowNode, target: FlowNode,
             ctx: InferenceContext) -> InferenceState:
    """Move min(remaining supply, remaining demand) from source to target."""
    if source.module != target.module:
        return state

    quantity = min(state.supply[source.key], state.demand[target.key])
    if quantity <= ctx.tolerance:
        return state

    supply = dict(state.supply)
    demand = dict(state.demand)
    supply[source.key] = max(0.0, supply[source.key] - quantity)
    demand[target.key] = max(0.0, demand[target.key] - quantity)

    edge = ConversionFlowEdge(
        module=source.module,
        source_type=source.type,
        source_condition=source.condition,
        target_type=target.type,
        target_condition=target.condition,
        quantity=quantity,
        intervention=intervention_label(source, target, ctx.tables),
    )
    return InferenceState(MappingProxyType(supply), MappingProxyType(demand), state.edges + (edge,))


def _has_supply(state: InferenceState, node: FlowNode, ctx: InferenceContext) -> bool:
    return state.supply[node.key] > ctx.tolerance


def _has_demand(state: InferenceState, node: FlowNode, ctx: InferenceContext) -> bool:
    return state.demand[node.key] > ctx.tolerance


# ================= Passes =================

def condition_upgrade_pass(state: InferenceState, ctx: InferenceContext) -> InferenceState:
    """Same type, improved condition."""
    for target in ctx.demand_nodes:
        for source in ctx.supply_nodes:
            if not _has_demand(state, target, ctx):
                break
            if (source.type == target.type and _has_supply(state, source, ctx) and
                    ctx.tables.is_condition_upgrade(source.condition, target.condition)):
                state = transfer(state, source, target, ctx)
    return state


def artificial_first_pass(state: InferenceState, ctx: InferenceContext) -> InferenceState:
    """Artificial supply drains into any remaining demand before natural supply."""
    for source in ctx.supply_nodes:
        if not source.artificial:
            continue
        for target in ctx.demand_nodes:
            if not _has_supply(state, source, ctx):
                break
            if _has_demand(state, target, ctx):
                state = transfer(state, source, target, ctx)
    return state


def same_broad_habitat_pass(state: InferenceState, ctx: InferenceContext) -> InferenceState:
    """Supply into demand of the same broad habitat."""
    for target in ctx.demand_nodes:
        if not target.broad_habitat:
            continue
        for source in ctx.supply_nodes:
            if not _has_demand(state, target, ctx):
                break
            if source.broad_habitat == target.broad_habitat and _has_supply(state, source, ctx):
                state = transfer(state, source, target, ctx)
    return state


def lowest_distinctiveness_pass(state: InferenceState, ctx: InferenceContext) -> InferenceState:
    """Remaining supply across categories, least distinctive first."""
    by_distinctiveness = sorted(ctx.supply_nodes, key=lambda n: (n.distinctiveness_score,) + _node_order(n))
    for source in by_distinctiveness:
        for target in ctx.demand_nodes:
            if not _has_supply(state, source, ctx):
                break
            if _has_demand(state, target, ctx):
                state = transfer(state, source, target, ctx)
    return state


def retention_pass(state: InferenceState, ctx: InferenceContext) -> InferenceState:
    """Leftover supply becomes a Retained edge."""
    edges = list(state.edges)
    supply = dict(state.supply)
    for source in ctx.supply_nodes:
        remaining = supply[source.key]
        if remaining > ctx.tolerance:
            edges.append(ConversionFlowEdge(
                module=source.module,
                source_type=source.type,
                source_condition=source.condition,
                target_type=RETAINED,
                target_condition=source.condition,
                quantity=remaining,
                intervention=INTERVENTION_RETAINED,
            ))
            supply[source.key] = 0.0
    return InferenceState(MappingProxyType(supply), state.demand, tuple(edges))


PASSES: Tuple[Tuple[str, Callable[[InferenceState, InferenceContext], InferenceState]], ...] = (
    ("condition upgrade", condition_upgrade_pass),
    ("artificial first", artificial_first_pass),
    ("same broad habitat", same_broad_habitat_pass),
    ("lowest distinctiveness", lowest_distinctiveness_pass),
    ("retained", retention_pass),
)


# ================= Engine =================

def infer_conversions(supply_nodes: Iterable[FlowNode], demand_nodes: Iterable[FlowNode],
                      tables: ReferenceTables, tolerance: Optional[float] = None) -> ConversionResult:
    """Run every pass over one site's baseline (supply) and improvement (demand) nodes."""
    if tolerance is None:
        tolerance = get_settings().float_tolerance

    ctx = InferenceContext(
        tables=tables,
        tolerance=tolerance,
        supply_nodes=tuple(sorted(supply_nodes, key=_node_order)),
        demand_nodes=tuple(sorted(demand_nodes, key=_node_order)),
    )
    state = InferenceState(
        supply=MappingProxyType({n.key: n.size for n in ctx.supply_nodes}),
        demand=MappingProxyType({n.key: n.size for n in ctx.demand_nodes}),
    )

    for name, pass_fn in PASSES:
        before = len(state.edges)
        state = pass_fn(state, ctx)
        logger.debug(f"Pass '{name}': {len(state.edges) - before} edges")

    unmatched = {k: v for k, v in state.demand.items() if v > tolerance}
    return ConversionResult(
        supply_nodes=ctx.supply_nodes,
        demand_nodes=ctx.demand_nodes,
        edges=state.edges,
        unmatched_demand=MappingProxyType(unmatched),
    )


def infer_site_conversions(baseline_rows: Iterable[CollatedHabitatRow],
                           improvement_rows: Iterable[CollatedHabitatRow],
                           tables: ReferenceTables,
                           tolerance: Optional[float] = None) -> ConversionResult:
    """Infer conversions from one site's collated baseline and improvement rows."""
    return infer_conversions(nodes_from_rows(baseline_rows, tables),
                             nodes_from_rows(improvement_rows, tables),
                             tables, tolerance)


def matched_baseline_hus(result: ConversionResult) -> Dict[Tuple[str, str], float]:
    """
    Baseline HUs moved into each improvement (module, type): edge quantity
    times the source node's HUs per unit size.
    """
    density = {n.key: n.hu_density for n in result.supply_nodes}
    matched: Dict[Tuple[str, str], float] = {}
    for edge in result.transfers:
        source_key = (edge.module, edge.source_type, edge.source_condition)
        key = (edge.module, edge.target_type)
        matched[key] = matched.get(key, 0.0) + edge.quantity * density.get(source_key, 0.0)
    return matched


# ================= Flow diagram =================

def build_flow_graph(result: ConversionResult) -> Dict[str, List[Dict]]:
    """
    Node and link lists for the flow diagram. Baseline nodes come first,
    then improvement nodes, then one Retained node per module; within a
    side, more distinctive habitats come first.
    """
    def side_order(node: FlowNode):
        return (-node.distinctiveness_score, node.module, node.type, node.condition)

    nodes = []
    index = {}

    def add_node(ident, **attrs):
        index[ident] = len(nodes)
        nodes.append(dict(attrs))

    for node in sorted(result.supply_nodes, key=side_order):
        add_node(("baseline",) + node.key, side="baseline", module=node.module, type=node.type,
                 condition=node.condition, label=f"{node.type} ({node.condition})",
                 distinctiveness_score=node.distinctiveness_score, size=node.size)

    for node in sorted(result.demand_nodes, key=side_order):
        add_node(("improvement",) + node.key, side="improvement", module=node.module, type=node.type,
                 condition=node.condition, label=f"{node.type} ({node.condition})",
                 distinctiveness_score=node.distinctiveness_score, size=node.size)

    retained_size: Dict[str, float] = {}
    for edge in result.retained:
        retained_size[edge.module] = retained_size.get(edge.module, 0.0) + edge.quantity
    for module, size in retained_size.items():
        add_node(("retained", module), side="improvement", module=module, type=RETAINED,
                 condition="", label=RETAINED, distinctiveness_score=0.0, size=size)

    links = []
    for edge in result.edges:
        source = index[("baseline", edge.module, edge.source_type, edge.source_condition)]
        if edge.is_retained:
            target = index[("retained", edge.module)]
        else:
            target = index[("improvement", edge.module, edge.target_type, edge.target_condition)]
        links.append({
            "source": source,
            "target": target,
            "value": edge.quantity,
            "intervention": edge.intervention,
        })

    return {"nodes": nodes, "links": links}


EDGE_COLUMNS = ["module", "source_type", "source_condition", "target_type",
                "target_condition", "quantity", "intervention"]


def edges_to_frame(edges: Iterable[ConversionFlowEdge]) -> pd.DataFrame:
    records = [
        {
            "module": e.module,
            "source_type": e.source_type,
            "source_condition": e.source_condition,
            "target_type": e.target_type,
            "target_condition": e.target_condition,
            "quantity": e.quantity,
            "intervention": e.intervention,
        }
        for e in edges
    ]
    return pd.DataFrame(records, columns=EDGE_COLUMNS)
