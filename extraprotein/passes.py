"""A small pass framework: named function passes, cached analyses, and a pass manager that can check
that passes keep the IR well formed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .ir import Function
from .analysis import Dominance, DominatorTree, LoopInfo
from .verify import verify_function, cfg_shape, VerificationError

logger = logging.getLogger(__name__)


class FunctionPass(ABC):
    """A transformation applied to one function at a time.

    Subclasses set `name`, list the analyses they read in `required_analyses`, and set `preserves_cfg`
    when they never add, remove or retarget blocks or edges.
    """
    name: str = "unnamed"
    description: str = ""
    required_analyses: Tuple[type, ...] = ()
    preserves_cfg: bool = False

    @abstractmethod
    def run(self, function: Function, analyses: Optional['AnalysisManager'] = None) -> bool:
        """Transform function in place. Returns True if anything changed."""
        pass


class AnalysisManager:
    """Computes analyses of one function on demand and caches them until they are invalidated."""

    # Analyses that depend only on the block graph, and so survive a pass that preserves it.
    CFG_ANALYSES = (Dominance, DominatorTree, LoopInfo)

    def __init__(self, function: Function):
        self.function = function
        self.cache: Dict[type, object] = {}

    def get(self, analysis: type):
        if analysis not in self.cache:
            if analysis is Dominance:
                self.cache[analysis] = Dominance(self.function)
            elif analysis is DominatorTree:
                self.cache[analysis] = DominatorTree(self.function, self.get(Dominance))
            elif analysis is LoopInfo:
                self.cache[analysis] = LoopInfo(self.function, self.get(Dominance))
            else:
                raise KeyError(f"Unknown analysis {analysis.__name__}")
        return self.cache[analysis]

    def invalidate(self, preserve_cfg: bool = False):
        if preserve_cfg:
            self.cache = {k: v for k, v in self.cache.items() if k in self.CFG_ANALYSES}
        else:
            self.cache = {}


class PassManager:
    def __init__(self, passes: Sequence[FunctionPass], verify: bool = False):
        """
        :param passes: the passes to run, in order, on every function.
        :param verify: check the IR after every pass, and check that passes declaring `preserves_cfg`
        did not change the block graph. Raises verify.VerificationError on failure.
        """
        self.passes = list(passes)
        self.verify = verify

    def run_on_function(self, function: Function) -> bool:
        analyses = AnalysisManager(function)
        changed = False
        for function_pass in self.passes:
            for analysis in function_pass.required_analyses:
                analyses.get(analysis)
            before = cfg_shape(function) if self.verify and function_pass.preserves_cfg else None

            logger.debug("Running %s on %s", function_pass.name, function.name)
            pass_changed = function_pass.run(function, analyses)
            changed = changed or pass_changed

            if before is not None and cfg_shape(function) != before:
                raise VerificationError(f"{function_pass.name} changed the control flow graph of {function.name}.", [])
            if self.verify:
                verify_function(function)
            if pass_changed:
                analyses.invalidate(function_pass.preserves_cfg)
        return changed

    def run(self, functions: Iterable[Function]) -> bool:
        changed = False
        count = 0
        for function in functions:
            changed = self.run_on_function(function) or changed
            count += 1
        logger.info("Ran %d passes over %d functions (changed=%s)", len(self.passes), count, changed)
        return changed
