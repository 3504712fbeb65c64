"""Inverse kinematics -- Cyclic Coordinate Descent over transform chains."""

from chainforge.ik.ccd_solver import (
    CCDSolver,
    ChainTopologyError,
    IKSolveResult,
    SolverSettings,
    build_chain,
    solve_ik_ccd,
)

__all__ = [
    "CCDSolver",
    "ChainTopologyError",
    "IKSolveResult",
    "SolverSettings",
    "build_chain",
    "solve_ik_ccd",
]
