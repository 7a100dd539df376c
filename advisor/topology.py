"""Hex board adjacency from colonist.io coordinates.

COORDINATE SYSTEMS:
- tiles:   hexFace(x, y)
- corners: hexCorner(x, y, z), z in {0, 1} picks one of two vertex orientations
- edges:   hexEdge(x, y, z), z in {0, 1, 2} picks one of three orientations
- ports:   edge coordinates plus a port type

Adjacency is derived purely from coordinate arithmetic. The offsets that
relate a corner to its tiles and an edge to its two corners are data
(CoordinateScheme), because two offset conventions are in use:

- OBSERVED_SCHEME: offsets read off captured traffic.
    corner z=0 -> tiles (x,y), (x-1,y), (x,y-1)
    corner z=1 -> tiles (x,y), (x+1,y), (x,y+1)
    edge z=0 -> corners (x,y,0), (x,y+1,1)
    edge z=1 -> corners (x,y,1), (x+1,y,0)
    edge z=2 -> corners (x,y,0), (x,y,1)
- AXIAL_SCHEME: axial formulas cross-checked against a full 54-node graph.
    corner z=0 -> tiles (x,y), (x,y-1), (x+1,y-1)
    corner z=1 -> tiles (x,y), (x-1,y+1), (x,y+1)
    edge z=0 -> corners (x,y,0), (x,y-1,1)
    edge z=1 -> corners (x,y-1,1), (x-1,y+1,0)
    edge z=2 -> corners (x-1,y+1,0), (x,y,1)

ALGORITHM:
1. Index tiles by (x, y) and corners by (x, y, z).
2. corner -> tiles through the scheme's corner offsets; invert for tile -> corners.
3. edge -> corners through the scheme's edge offsets; invert for corner -> edges.
4. corner -> corners by walking each corner's edges.
5. port -> corners through the same edge rule; attach descriptors to corners.

Missing neighbors are simply absent: streaming board data is expected to be
partial until a full snapshot arrives.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from advisor import config
from advisor.model import AdjacencyIndex, Corner, Edge, Port, PortInfo, Tile

logger = logging.getLogger(__name__)


class TopologyError(ValueError):
    """An edge resolved to more than two corners in strict mode."""


@dataclass(frozen=True)
class CoordinateScheme:
    name: str
    # corner z -> (dx, dy) offsets of the tiles touching that corner
    corner_tiles: Dict[int, Tuple[Tuple[int, int], ...]]
    # edge z -> two (dx, dy, z) corner offsets
    edge_corners: Dict[int, Tuple[Tuple[int, int, int], Tuple[int, int, int]]]

    def tiles_of_corner(self, x: int, y: int, z: int) -> List[Tuple[int, int]]:
        return [(x + dx, y + dy) for dx, dy in self.corner_tiles.get(z, ())]

    def corners_of_edge(self, x: int, y: int, z: int) -> List[Tuple[int, int, int]]:
        return [(x + dx, y + dy, cz) for dx, dy, cz in self.edge_corners.get(z, ())]


OBSERVED_SCHEME = CoordinateScheme(
    name="observed",
    corner_tiles={
        0: ((0, 0), (-1, 0), (0, -1)),
        1: ((0, 0), (1, 0), (0, 1)),
    },
    edge_corners={
        0: ((0, 0, 0), (0, 1, 1)),
        1: ((0, 0, 1), (1, 0, 0)),
        2: ((0, 0, 0), (0, 0, 1)),
    },
)

AXIAL_SCHEME = CoordinateScheme(
    name="axial",
    corner_tiles={
        0: ((0, 0), (0, -1), (1, -1)),
        1: ((0, 0), (-1, 1), (0, 1)),
    },
    edge_corners={
        0: ((0, 0, 0), (0, -1, 1)),
        1: ((0, -1, 1), (-1, 1, 0)),
        2: ((-1, 1, 0), (0, 0, 1)),
    },
)

SCHEMES = {s.name: s for s in (OBSERVED_SCHEME, AXIAL_SCHEME)}


def get_scheme(name: Optional[str] = None) -> CoordinateScheme:
    """Look up a scheme by name; None means the configured default."""
    name = name or config.COORD_SCHEME
    try:
        return SCHEMES[name]
    except KeyError:
        raise ValueError(f"Unknown coordinate scheme {name!r}; choose from {sorted(SCHEMES)}")


def _match_edge(
    index: int,
    x: int, y: int, z: int,
    corner_ids_by_xyz: Dict[Tuple[int, int, int], List[int]],
    scheme: CoordinateScheme,
    anomalies: List[int],
    strict: bool,
    kind: str = "edge",
) -> List[int]:
    """Resolve an edge coordinate to at most two corner ids."""
    matches = set()
    for coord in scheme.corners_of_edge(x, y, z):
        matches.update(corner_ids_by_xyz.get(coord, ()))
    ids = sorted(matches)
    if len(ids) > 2:
        msg = f"{kind} {index} at ({x},{y},{z}) matched {len(ids)} corners {ids}"
        if strict:
            raise TopologyError(msg)
        logger.warning(f"{msg}; keeping {ids[:2]}")
        anomalies.append(index)
        ids = ids[:2]
    return ids


def _placed(primitive) -> bool:
    return None not in (primitive.x, primitive.y, primitive.z)


def _better_port(current: Optional[PortInfo], candidate: PortInfo) -> PortInfo:
    if current is None or candidate.ratio < current.ratio:
        return candidate
    return current


def build_adjacency(
    tiles: Dict[int, Tile],
    corners: Dict[int, Corner],
    edges: Dict[int, Edge],
    ports: Optional[Dict[int, Port]] = None,
    scheme: Optional[CoordinateScheme] = None,
    strict: bool = False,
) -> AdjacencyIndex:
    """Derive every adjacency relation from tile/corner/edge/port coordinates.

    Pure: the inputs are not modified, and calling it again on the same
    primitives gives an equal index.

    Args:
        tiles: tile id -> Tile
        corners: corner id -> Corner
        edges: edge id -> Edge
        ports: port id -> Port (edge-coordinate primitives)
        scheme: offset convention, defaults to config.COORD_SCHEME
        strict: raise TopologyError instead of truncating an edge that
            matched more than two corners

    Returns:
        AdjacencyIndex with sorted id lists.
    """
    scheme = scheme or get_scheme()
    ports = ports or {}

    tile_by_xy: Dict[Tuple[int, int], int] = {}
    for tid in sorted(tiles):
        t = tiles[tid]
        if t.x is None or t.y is None:
            continue
        tile_by_xy.setdefault((t.x, t.y), tid)

    corner_ids_by_xyz: Dict[Tuple[int, int, int], List[int]] = defaultdict(list)
    for cid in sorted(corners):
        c = corners[cid]
        if not _placed(c):
            continue
        corner_ids_by_xyz[(c.x, c.y, c.z)].append(cid)

    index = AdjacencyIndex()

    # corner <-> tile
    tile_corners = defaultdict(set)
    for cid, c in corners.items():
        touching = set()
        if not _placed(c):
            index.corner_tiles[cid] = []
            continue
        for xy in scheme.tiles_of_corner(c.x, c.y, c.z):
            tid = tile_by_xy.get(xy)
            if tid is not None:
                touching.add(tid)
                tile_corners[tid].add(cid)
        index.corner_tiles[cid] = sorted(touching)
    for tid in tiles:
        index.tile_corners[tid] = sorted(tile_corners.get(tid, ()))

    # edge <-> corner
    corner_edges = defaultdict(set)
    for eid in sorted(edges):
        e = edges[eid]
        if not _placed(e):
            index.edge_corners[eid] = []
            continue
        ends = _match_edge(
            eid, e.x, e.y, e.z, corner_ids_by_xyz, scheme, index.anomalies, strict
        )
        index.edge_corners[eid] = ends
        for cid in ends:
            corner_edges[cid].add(eid)

    # corner <-> corner, only through edges that resolved both ends
    corner_corners = defaultdict(set)
    for eid, ends in index.edge_corners.items():
        if len(ends) == 2:
            a, b = ends
            corner_corners[a].add(b)
            corner_corners[b].add(a)

    for cid in corners:
        index.corner_edges[cid] = sorted(corner_edges.get(cid, ()))
        index.corner_corners[cid] = sorted(corner_corners.get(cid, ()))

    # ports -> corners
    for pid in sorted(ports):
        p = ports[pid]
        ends = _match_edge(
            pid, p.x, p.y, p.z, corner_ids_by_xyz, scheme, [], strict, kind="port"
        )
        index.port_corners[pid] = ends
        info = PortInfo(ratio=p.ratio, resource=p.resource)
        for cid in ends:
            index.corner_ports[cid] = _better_port(index.corner_ports.get(cid), info)

    unresolved = sum(1 for ends in index.edge_corners.values() if len(ends) < 2)
    logger.debug(
        f"Adjacency built ({scheme.name}): {len(tiles)} tiles, {len(corners)} corners, "
        f"{len(edges)} edges ({unresolved} partial), {len(ports)} ports, "
        f"{len(index.anomalies)} anomalies"
    )
    return index
