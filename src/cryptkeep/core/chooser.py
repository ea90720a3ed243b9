"""
Decrypt resolution: turn a fuzzy target into concrete keeper entries.

Resolution is split in two so it can be tested without a terminal:

- :meth:`DecryptResolver.candidates` builds the numbered candidate list
  (files newest first, then folders alphabetically, numbered from 1).
- :meth:`DecryptResolver.select` maps an index to a target; 0 aborts.

:meth:`DecryptResolver.resolve` glues them together and only asks the
``choose`` callback when the query is ambiguous.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Union
import os

from .exceptions import InvalidSelectionError, NotFoundError
from .keeper import MetadataStore
from .models import (
    Aborted,
    Candidate,
    CandidateKind,
    CandidateList,
    CryptEntry,
    ResolvedTarget,
)


ABORT_INDEX = 0

Chooser = Callable[[CandidateList], int]


class DecryptResolver:
    def __init__(self, keeper: MetadataStore):
        self.keeper = keeper

    def candidates(self, query: str) -> CandidateList:
        """Numbered files and folders matching ``query``; NotFoundError when empty."""
        files = sorted(
            self.keeper.find(query),
            key=lambda e: (-e.modified_at.timestamp(), e.crypt_path),
        )
        folders = [f for f in self.keeper.folders() if self._folder_matches(f, query)]

        result = CandidateList(query=query)
        index = 1
        for entry in files:
            result.files.append(
                Candidate(
                    index=index,
                    kind=CandidateKind.FILE,
                    path=entry.crypt_path,
                    entry=entry,
                    modified_at=entry.modified_at,
                )
            )
            index += 1
        for folder in sorted(folders):
            result.folders.append(Candidate(index=index, kind=CandidateKind.FOLDER, path=folder))
            index += 1

        if not len(result):
            raise NotFoundError(f"Nothing in the keeper matches {query!r}")
        return result

    def _folder_matches(self, folder: str, query: str) -> bool:
        query = query.strip()
        if not query:
            return False
        norm = os.path.normcase(folder)
        q = query.rstrip("/\\")
        if os.path.isabs(q):
            q = os.path.normcase(os.path.normpath(q))
            return norm == q or norm.startswith(q + os.sep)
        if self.keeper.crypt_root is not None and (os.sep in q or (os.altsep and os.altsep in q)):
            full = os.path.normcase(os.path.normpath(str(self.keeper.crypt_root / q)))
            return norm == full or norm.startswith(full + os.sep)
        return Path(folder).name.casefold() == q.casefold()

    def select(self, candidates: CandidateList, index: int) -> Union[ResolvedTarget, Aborted]:
        """Map a 1-based index to a target; 0 aborts without touching anything."""
        if index == ABORT_INDEX:
            return Aborted()
        items = candidates.all
        if not 1 <= index <= len(items):
            raise InvalidSelectionError(f"Choose a number between 0 and {len(items)}")
        picked = items[index - 1]
        if picked.kind is CandidateKind.FILE:
            return ResolvedTarget(kind=CandidateKind.FILE, path=picked.path, entries=[picked.entry])
        return ResolvedTarget(
            kind=CandidateKind.FOLDER, path=picked.path, entries=self.entries_under(picked.path)
        )

    def entries_under(self, folder: str) -> list[CryptEntry]:
        prefix = os.path.normcase(folder.rstrip(os.sep)) + os.sep
        return sorted(
            (e for e in self.keeper.all() if os.path.normcase(e.crypt_path).startswith(prefix)),
            key=lambda e: e.crypt_path,
        )

    def resolve(self, query: str, choose: Optional[Chooser] = None) -> Union[ResolvedTarget, Aborted]:
        """Resolve ``query``; exact container paths and single matches skip the prompt."""
        candidates = self.candidates(query)

        exact = self._exact(candidates, query)
        if exact is not None:
            return self.select(candidates, exact.index)
        if len(candidates) == 1:
            return self.select(candidates, 1)

        choose = choose or prompt_choice
        return self.select(candidates, choose(candidates))

    @staticmethod
    def _exact(candidates: CandidateList, query: str) -> Optional[Candidate]:
        if not os.path.isabs(query):
            return None
        target = os.path.normcase(os.path.normpath(query))
        for c in candidates.files:
            if os.path.normcase(c.path) == target:
                return c
        return None


def format_candidates(candidates: CandidateList) -> str:
    """Numbered table shown to the user; 0 is always the abort row."""
    lines = [
        f"multiple matches found for {candidates.query!r}",
        "choose one of the following (or 0 to abort):",
        "",
        f"{'#':<4}{'kind':<8}{'path':<48}{'last modified':<16}",
    ]
    for c in candidates.all:
        when = c.modified_at.strftime("%m/%d/%y %H:%M") if c.modified_at else ""
        lines.append(f"{c.index:<4}{c.kind.value:<8}{c.path:<48}{when:<16}")
    lines.append(f"{ABORT_INDEX:<4}abort")
    return "\n".join(lines)


def prompt_choice(candidates: CandidateList, input_fn=input, output_fn=print) -> int:
    """Interactive chooser: print the table and read an index from the terminal."""
    output_fn(format_candidates(candidates))
    while True:
        raw = input_fn("> ").strip()
        try:
            index = int(raw)
        except ValueError:
            output_fn(f"not a number: {raw!r}")
            continue
        if 0 <= index <= len(candidates):
            return index
        output_fn(f"choose a number between 0 and {len(candidates)}")
