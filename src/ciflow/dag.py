# dag.py
from __future__ import annotations

import heapq
from collections import deque
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Set, Tuple

from .errors import CyclicDependency, DuplicateJob, UnknownDependency
from .model import Job


class JobGraph:
    """
    Read-only dependency graph for one run.

    Jobs are kept in declaration order and addressed by name. Edges are
    stored both ways:
      - needs[name]:      jobs that must finish BEFORE `name`
      - dependents[name]: jobs that wait on `name`
    """

    def __init__(
        self,
        jobs: List[Job],
        needs: Dict[str, frozenset[str]],
        dependents: Dict[str, frozenset[str]],
        order: Tuple[str, ...],
    ):
        self._jobs = {j.name: j for j in jobs}
        self._index = {j.name: i for i, j in enumerate(jobs)}
        self._needs = needs
        self._dependents = dependents
        self._order = order

    # ---- container protocol ----
    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[Job]:
        return iter(self._jobs.values())

    def __getitem__(self, name: str) -> Job:
        return self._jobs[name]

    # ---- edges ----
    @property
    def names(self) -> Tuple[str, ...]:
        """Job names in declaration order."""
        return tuple(self._jobs)

    @property
    def order(self) -> Tuple[str, ...]:
        """Topological order, ties broken by declaration order."""
        return self._order

    @property
    def needs(self) -> Mapping[str, frozenset[str]]:
        return MappingProxyType(self._needs)

    @property
    def dependents(self) -> Mapping[str, frozenset[str]]:
        return MappingProxyType(self._dependents)

    def roots(self) -> List[str]:
        return [n for n in self._jobs if not self._needs[n]]

    def upstream_of(self, name: str) -> Set[str]:
        return _closure(name, self._needs)

    def downstream_of(self, name: str) -> Set[str]:
        return _closure(name, self._dependents)

    def sorted_names(self, names: Iterable[str]) -> List[str]:
        return sorted(names, key=self._index.__getitem__)

    def levels(self) -> List[List[str]]:
        """
        Group the topological order into stages. Every job in a stage only
        needs jobs from earlier stages, so a stage could run in parallel.
        Used for printing the plan, the scheduler does not wait on stages.
        """
        depth: Dict[str, int] = {}
        for name in self._order:
            depth[name] = 1 + max((depth[d] for d in self._needs[name]), default=-1)

        levels: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name in self._order:
            levels[depth[name]].append(name)
        return levels


def _closure(start: str, edges: Mapping[str, Iterable[str]]) -> Set[str]:
    seen: Set[str] = set()
    q = deque(edges[start])
    while q:
        node = q.popleft()
        if node in seen:
            continue
        seen.add(node)
        q.extend(edges[node])
    return seen


def build_graph(jobs: Iterable[Job]) -> JobGraph:
    """
    Build a JobGraph from Job objects.

    Raises:
      DuplicateJob       two jobs share a name
      UnknownDependency  a job needs a name that is not defined
      CyclicDependency   the needs relation has a cycle; every job on a
                         cycle is reported, not just one edge
    """
    jobs = list(jobs)

    index: Dict[str, int] = {}
    for i, j in enumerate(jobs):
        if j.name in index:
            raise DuplicateJob(job=j.name)
        index[j.name] = i

    needs: Dict[str, Set[str]] = {j.name: set() for j in jobs}
    dependents: Dict[str, Set[str]] = {j.name: set() for j in jobs}

    for j in jobs:
        for dep in j.needs:
            if dep not in index:
                raise UnknownDependency(job=j.name, missing=dep)
            # Edge dep -> job (dep must run before job)
            needs[j.name].add(dep)
            dependents[dep].add(j.name)

    # Kahn's algorithm; the heap is keyed by declaration index so the
    # order is the same on every run with the same input.
    indeg = {name: len(deps) for name, deps in needs.items()}
    heap = [index[name] for name, d in indeg.items() if d == 0]
    heapq.heapify(heap)

    order: List[str] = []
    while heap:
        name = jobs[heapq.heappop(heap)].name
        order.append(name)
        for child in dependents[name]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, index[child])

    if len(order) != len(jobs):
        stuck = {name for name, d in indeg.items() if d > 0}
        members = _cycle_members(stuck, dependents)
        raise CyclicDependency(members=tuple(sorted(members, key=index.__getitem__)))

    return JobGraph(
        jobs,
        needs={n: frozenset(s) for n, s in needs.items()},
        dependents={n: frozenset(s) for n, s in dependents.items()},
        order=tuple(order),
    )


def _cycle_members(stuck: Set[str], dependents: Mapping[str, Iterable[str]]) -> Set[str]:
    """
    Jobs left over by Kahn's algorithm are either on a cycle or downstream
    of one. Keep only those that can reach themselves.
    """
    members: Set[str] = set()
    for start in stuck:
        seen: Set[str] = set()
        q = deque(d for d in dependents[start] if d in stuck)
        while q:
            node = q.popleft()
            if node == start:
                members.add(start)
                break
            if node in seen:
                continue
            seen.add(node)
            q.extend(d for d in dependents[node] if d in stuck)
    return members
