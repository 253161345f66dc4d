"""
The network of locales. Locales are the nodes of a `networkx.DiGraph`, indexed by their position in the list of
`Locale` objects, and connections are its directed edges. Each edge carries:

1. ``distance`` -- distance between the two locales
2. ``w`` -- inverse distance weight, normalised so the outbound ``w`` of every locale sums to 1
3. ``gw`` -- gravity weight (product of populations over squared distance), normalised the same way
4. ``flow_rate`` -- the smallest flow of the two endpoints, following their alert levels

The network is built either from tables (:meth:`createNetworkFromTables`) or at random
(:meth:`createRandomNetwork`). Both guarantee every locale has at least one outbound connection when there is more
than one locale.
"""
# pylint: disable=import-error
import collections
import logging
from typing import Deque, List, Optional, Tuple

import networkx as nx  # type: ignore
import numpy as np  # type: ignore

from spatial_epi import loaders
from spatial_epi.common import Lazy

logger = logging.getLogger(__name__)

WEIGHT_KEYS = {"distance": "w", "gravity": "gw"}


# pylint: disable=too-many-instance-attributes
class Locale:
    """
    A region of the model, with its own population, case counters, test history and alert level. Locales are created
    once when the network is built and mutated once per simulated day.

    :param index: position of the locale in the list of locales, also its node in the graph
    :param localeId: identifier of the locale in the input tables
    :param name: human readable name
    :param population: initial population
    :param x: x coordinate
    :param y: y coordinate
    """

    # pylint: disable=too-many-arguments
    def __init__(self, index: int, localeId: str, name: str, population: int, x: float, y: float):
        self.index = index
        self.localeId = localeId
        self.name = name
        self.x = x
        self.y = y
        self.pop0 = population
        self.susceptible = population

        self.alertLevel = 0
        self.control = 1.0
        self.flowRate = 0.0

        self.activeCases = 0
        self.cumulativeCases = 0
        self.cumulativeInfected = 0
        self.cumulativeRecovered = 0
        self.newCases = 0
        self.newInfected = 0
        self.newRecovered = 0
        self.newTests = 0
        self.newPositives = 0

        self.recentTests: Deque[int] = collections.deque()
        self.recentPositives: Deque[int] = collections.deque()
        self.positiveRate = 1.0

    def resetDailyCounters(self):
        """Zero the counters that only refer to the current day"""
        self.newCases = 0
        self.newInfected = 0
        self.newRecovered = 0
        self.newTests = 0
        self.newPositives = 0

    def __repr__(self):
        return f"Locale({self.localeId!r}, pop0={self.pop0}, susceptible={self.susceptible}, level={self.alertLevel})"


def distanceMatrix(locales: List[Locale]) -> np.ndarray:
    """Euclidean distance between every pair of locales.

    :param locales: the locales
    :return: (N, N) matrix of distances
    """
    coords = np.array([[locale.x, locale.y] for locale in locales], dtype=np.float64)
    return np.sqrt(((coords[:, None, :] - coords[None, :, :]) ** 2).sum(axis=2))


def randomPopulations(
        numLocales: int,
        totalPopulation: int,
        populationCV: float,
        random_state: np.random.Generator,
) -> List[int]:
    r"""
    Draw a population for every locale from a Gamma distribution with mean :math:`\frac{total}{N}` and coefficient of
    variation `populationCV`, then rescale so the populations add up to `totalPopulation`. Every locale keeps at least
    one person and rounding leftovers go to the largest locale.

    :param numLocales: number of locales
    :param totalPopulation: target total population
    :param populationCV: coefficient of variation of the locale populations
    :param random_state: Random number generator used for the model
    :return: the population of each locale
    """
    mean = totalPopulation / numLocales
    shape = 1.0 / populationCV ** 2
    raw = random_state.gamma(shape, mean / shape, size=numLocales)
    populations = np.maximum(1, np.round(raw * totalPopulation / raw.sum())).astype(int)
    largest = int(np.argmax(populations))
    populations[largest] += totalPopulation - int(populations.sum())
    if populations[largest] < 1:
        raise ValueError(f"Could not split {totalPopulation} people into {numLocales} locales")
    return [int(pop) for pop in populations]


def _nearestNonNeighbour(graph: nx.DiGraph, distances: np.ndarray, index: int) -> Optional[int]:
    candidates = [
        other for other in np.argsort(distances[index], kind="stable")
        if other != index and not graph.has_edge(index, other)
    ]
    if not candidates:
        return None
    return int(candidates[0])


def _link(graph: nx.DiGraph, distances: np.ndarray, a: int, b: int):
    graph.add_edge(a, b, distance=float(distances[a, b]))
    graph.add_edge(b, a, distance=float(distances[b, a]))


def linkNearestNeighbours(
        graph: nx.DiGraph,
        distances: np.ndarray,
        targetLinks: int,
        random_state: np.random.Generator,
) -> int:
    """
    Connect the locales in the graph. First every locale, in order, is linked to its nearest locale it is not yet
    linked to. Then random locales are linked to their nearest non-neighbour until there are `targetLinks` links.
    Links are undirected, so each one is stored as a pair of directed edges.

    :param graph: graph with one node per locale. It is modified in place
    :param distances: (N, N) matrix of distances between locales
    :param targetLinks: number of links wanted. It is capped at the number of possible links
    :param random_state: Random number generator used for the model
    :return: the number of links in the graph
    """
    n = graph.number_of_nodes()
    targetLinks = min(targetLinks, n * (n - 1) // 2)

    for index in range(n):
        other = _nearestNonNeighbour(graph, distances, index)
        if other is not None:
            _link(graph, distances, index, other)

    while graph.number_of_edges() // 2 < targetLinks:
        index = int(random_state.integers(n))
        other = _nearestNonNeighbour(graph, distances, index)
        if other is not None:
            _link(graph, distances, index, other)

    return graph.number_of_edges() // 2


def reweightConnections(graph: nx.DiGraph, locales: List[Locale]):
    r"""
    Computes the ``w`` and ``gw`` attributes of every edge and normalises them so that, for each locale, the weights
    of its outbound connections add up to 1.

    .. math::

        w_{ij} \propto \frac{1}{d_{ij}} \qquad gw_{ij} \propto \frac{P_i P_j}{d_{ij}^2}

    :param graph: the network, modified in place
    :param locales: the locales, indexed as the graph nodes
    """
    for index in sorted(graph.nodes()):
        neighbours = sorted(graph.successors(index))
        if not neighbours:
            raise ValueError(f"Locale {locales[index].localeId} has no outbound connections")

        w = np.array([1.0 / graph.edges[index, j]["distance"] for j in neighbours])
        gw = np.array([
            locales[index].pop0 * locales[j].pop0 / graph.edges[index, j]["distance"] ** 2 for j in neighbours
        ])
        w /= w.sum()
        gw /= gw.sum()
        for j, wj, gwj in zip(neighbours, w, gw):
            graph.edges[index, j]["w"] = float(wj)
            graph.edges[index, j]["gw"] = float(gwj)


def _emptyGraph(locales: List[Locale]) -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_nodes_from(locale.index for locale in locales)
    return graph


def createRandomNetwork(
        parameters: loaders.NetworkParameters,
        random_state: np.random.Generator,
) -> Tuple[List[Locale], nx.DiGraph]:
    """
    Create a random world: locales scattered uniformly in a square, with Gamma distributed populations, linked to their
    nearest neighbours.

    :param parameters: the network parameters
    :param random_state: Random number generator used for the model
    :return: the locales and the network connecting them
    """
    coords = random_state.uniform(0.0, parameters.worldSize, size=(parameters.numLocales, 2))
    populations = randomPopulations(
        parameters.numLocales,
        parameters.totalPopulation,
        parameters.populationCV,
        random_state,
    )
    locales = [
        Locale(i, str(i), f"locale-{i}", population, float(x), float(y))
        for i, (population, (x, y)) in enumerate(zip(populations, coords))
    ]

    graph = _emptyGraph(locales)
    if len(locales) > 1:
        distances = distanceMatrix(locales)
        links = linkNearestNeighbours(
            graph,
            distances,
            int(round(parameters.linkMultiple * len(locales))),
            random_state,
        )
        reweightConnections(graph, locales)
        logger.info("Created random network with %s locales and %s links", len(locales), links)
    return locales, graph


def createNetworkFromTables(
        definitions: List[loaders.LocaleDefinition],
        distances: List[loaders.Distance],
        maxDistance: float,
) -> Tuple[List[Locale], nx.DiGraph]:
    """
    Create the network from the locales and distances tables. Connections longer than `maxDistance` are dropped before
    the weights are computed.

    :param definitions: the locales, as read by :meth:`loaders.readLocales`
    :param distances: the directed distances, as read by :meth:`loaders.readDistances`
    :param maxDistance: longest connection kept
    :return: the locales and the network connecting them
    """
    locales = [
        Locale(i, definition.localeId, definition.name, definition.population, definition.x, definition.y)
        for i, definition in enumerate(definitions)
    ]
    indexById = {locale.localeId: locale.index for locale in locales}

    graph = _emptyGraph(locales)
    pruned = 0
    for entry in distances:
        if entry.origin not in indexById or entry.destination not in indexById:
            raise ValueError(f"Distance {entry.origin}->{entry.destination} refers to an unknown locale")
        if entry.distance > maxDistance:
            pruned += 1
            continue
        graph.add_edge(indexById[entry.origin], indexById[entry.destination], distance=entry.distance)

    if pruned:
        logger.info("Pruned %s connections longer than %s", pruned, maxDistance)
    if len(locales) > 1:
        reweightConnections(graph, locales)
    logger.debug("Out degrees: %s", Lazy(lambda: dict(graph.out_degree())))
    return locales, graph


def updateFlowRates(graph: nx.DiGraph, locales: List[Locale], index: int):
    """
    Recompute the flow rate of every connection to or from a locale, as the minimum flow of both endpoints.

    :param graph: the network, modified in place
    :param locales: the locales, indexed as the graph nodes
    :param index: the locale whose flow changed
    """
    for j in graph.successors(index):
        graph.edges[index, j]["flow_rate"] = min(locales[index].flowRate, locales[j].flowRate)
    for j in graph.predecessors(index):
        graph.edges[j, index]["flow_rate"] = min(locales[j].flowRate, locales[index].flowRate)


def selectNeighbour(
        graph: nx.DiGraph,
        index: int,
        weighting: str,
        random_state: np.random.Generator,
) -> Optional[int]:
    """
    Pick a neighbour of a locale at random. The chance of each outbound connection is its weight (``w`` or ``gw``
    depending on the weighting) times its flow rate. Neighbours are visited in ascending index order, a uniform number
    is drawn in [0, total) and the first neighbour whose cumulative weight is >= the draw is selected.

    :param graph: the network
    :param index: the locale the draw starts from
    :param weighting: "distance" or "gravity"
    :param random_state: Random number generator used for the model
    :return: the index of the neighbour, or None if the locale has no connection with positive weight
    """
    key = WEIGHT_KEYS[weighting]
    neighbours = sorted(graph.successors(index))
    cumulative = []
    total = 0.0
    for j in neighbours:
        edge = graph.edges[index, j]
        total += edge[key] * edge.get("flow_rate", 0.0)
        cumulative.append(total)

    if total <= 0.0:
        return None

    draw = random_state.uniform(0.0, total)
    for j, weight in zip(neighbours, cumulative):
        if weight >= draw:
            return j
    return neighbours[-1]
