"""Tests for the CCD inverse kinematics solver."""

import logging

import numpy as np
import pytest

from chainforge.core.events import EventType
from chainforge.core.registry import SceneContext
from chainforge.core.transform_node import TransformNode
from chainforge.ik import ccd_solver
from chainforge.ik.ccd_solver import (
    CCDSolver, ChainTopologyError, IKSolveResult, SolverSettings,
    build_chain, solve_ik_ccd,
)

TIP = (0.0, 0.0, 0.0)


# ── Helpers ───────────────────────────────────────────────────────────

def _make_arm():
    """base -> shoulder -> elbow -> hand, two unit links along +Z."""
    base = TransformNode("base")
    shoulder = TransformNode("shoulder")
    elbow = TransformNode("elbow", origin=(0, 0, 1))
    hand = TransformNode("hand", origin=(0, 0, 1))
    shoulder.link_parent(base)
    elbow.link_parent(shoulder)
    hand.link_parent(elbow)
    return base, shoulder, elbow, hand


def _make_crane():
    """ground -> turret (yaw hinge) -> boom (pitch hinge) -> hook."""
    ground = TransformNode("ground")
    turret = TransformNode("turret")
    boom = TransformNode("boom", origin=(0, 0.5, 0), orientation=(0, -20, 0))
    hook = TransformNode("hook", origin=(0, 0, 2))
    turret.link_parent(ground)
    boom.link_parent(turret)
    hook.link_parent(boom)
    turret.set_hinge_axis("yaw")
    boom.set_hinge_axis("pitch")
    return ground, turret, boom, hook


def _tip_distance(node, target):
    return float(np.linalg.norm(node.in_abs_system(TIP) - np.asarray(target)))


def _solver(iterations=20, accept_distance=0.01, accept_avg_angle=0.0, context=None):
    return CCDSolver(SolverSettings(iterations, accept_distance, accept_avg_angle), context)


# ── Chain topology ────────────────────────────────────────────────────

class TestBuildChain:
    def test_order_excludes_endpoints(self):
        base, shoulder, elbow, hand = _make_arm()
        assert build_chain(base, hand) == [elbow, shoulder]

    def test_adjacent_root_gives_empty_chain(self):
        base, shoulder, elbow, hand = _make_arm()
        assert build_chain(elbow, hand) == []

    def test_root_not_ancestor(self):
        base, shoulder, elbow, hand = _make_arm()
        with pytest.raises(ChainTopologyError):
            build_chain(TransformNode("elsewhere"), hand)

    def test_reversed_pair(self):
        base, shoulder, elbow, hand = _make_arm()
        with pytest.raises(ChainTopologyError):
            build_chain(hand, base)

    def test_end_effector_is_root(self):
        base, *_ = _make_arm()
        with pytest.raises(ChainTopologyError):
            build_chain(base, base)

    def test_topology_error_is_value_error(self):
        assert issubclass(ChainTopologyError, ValueError)


# ── Convergence ───────────────────────────────────────────────────────

class TestConvergence:
    def test_reachable_target(self):
        base, shoulder, elbow, hand = _make_arm()
        target = (1.5, 0.0, 0.0)
        result = _solver().solve(base, hand, TIP, target)
        assert result.success
        assert result.distance <= 0.01
        assert _tip_distance(hand, target) <= 0.01
        assert 1 <= result.iterations <= 20

    def test_reachable_target_off_plane(self):
        base, shoulder, elbow, hand = _make_arm()
        target = (0.6, 0.8, 0.9)
        result = _solver(iterations=50, accept_distance=1e-3).solve(base, hand, TIP, target)
        assert result.success
        assert _tip_distance(hand, target) <= 1e-3

    def test_already_at_target(self):
        base, shoulder, elbow, hand = _make_arm()
        result = _solver().solve(base, hand, TIP, (0.0, 0.0, 2.0))
        assert result.success
        assert result.iterations == 0
        np.testing.assert_array_equal(shoulder.get_orientation(), [0, 0, 0])

    def test_unreachable_target_straightens_arm(self):
        base, shoulder, elbow, hand = _make_arm()
        target = (3.0, 0.0, 0.0)
        result = _solver(iterations=50).solve(base, hand, TIP, target)
        assert not result.success
        assert not result.plateaued
        assert result.iterations == 50
        assert result.distance == pytest.approx(1.0, abs=0.05)
        np.testing.assert_array_almost_equal(hand.in_abs_system(), [2, 0, 0], decimal=2)

    def test_pose_kept_after_failure(self):
        base, shoulder, elbow, hand = _make_arm()
        _solver(iterations=3).solve(base, hand, TIP, (3.0, 0.0, 0.0))
        assert shoulder.get_orientation()[2] != 0.0

    def test_zero_iterations_leaves_pose(self):
        base, shoulder, elbow, hand = _make_arm()
        result = _solver(iterations=0).solve(base, hand, TIP, (1.5, 0.0, 0.0))
        assert not result.success
        assert result.iterations == 0
        np.testing.assert_array_almost_equal(hand.in_abs_system(), [0, 0, 2])

    def test_plateau_stops_without_success(self):
        base, shoulder, elbow, hand = _make_arm()
        result = _solver(iterations=50, accept_avg_angle=1000.0).solve(
            base, hand, TIP, (3.0, 0.0, 0.0))
        assert result.plateaued
        assert not result.success
        assert result.iterations == 1

    def test_result_is_truthy_on_success(self):
        assert IKSolveResult(success=True, iterations=1, distance=0.0)
        assert not IKSolveResult(success=False, iterations=1, distance=1.0)


# ── Constraints during solve ──────────────────────────────────────────

class TestConstrainedSolve:
    def test_range_limit_respected(self):
        base, shoulder, elbow, hand = _make_arm()
        shoulder.set_enabled_axes([False, False, True])
        shoulder.set_constraints_max_deviation((0, 0, 10))
        result = _solver().solve(base, hand, TIP, (1.5, 0.0, 0.0))
        assert abs(shoulder.get_orientation()[2]) <= 10.0 + 1e-9
        assert not result.success

    def test_hinge_pins_are_exact(self):
        ground, turret, boom, hook = _make_crane()
        target = (1.2, 1.6, 1.2)
        start = _tip_distance(hook, target)
        result = _solver(iterations=30).solve(ground, hook, TIP, target)

        t, b = turret.get_orientation(), boom.get_orientation()
        assert t[0] == 0.0 and t[1] == 0.0
        assert b[0] == 0.0 and b[2] == 0.0
        assert t[2] == pytest.approx(45.0, abs=0.5)
        assert result.distance < 0.05 < start

    def test_nonzero_pins_survive_solve(self):
        ground = TransformNode("ground")
        boom = TransformNode("boom", orientation=(7.5, -20.0, 33.3))
        hook = TransformNode("hook", origin=(0, 0, 2))
        boom.link_parent(ground)
        hook.link_parent(boom)
        boom.set_hinge_axis("pitch")

        result = _solver().solve(ground, hook, TIP, (0.0, -2.0, 0.0))

        o = boom.get_orientation()
        assert o[0] == 7.5
        assert o[2] == 33.3
        assert o[1] == pytest.approx(90.0)
        assert result.success

    def test_prismatic_slides_to_target(self):
        base = TransformNode("base")
        slider = TransformNode("slider")
        hand = TransformNode("hand", origin=(0, 0, 1))
        slider.link_parent(base)
        hand.link_parent(slider)
        slider.set_joint_type("prismatic")
        target = (0.5, 0.2, 1.3)
        result = _solver().solve(base, hand, TIP, target)
        assert result.success
        assert result.iterations == 1
        np.testing.assert_array_almost_equal(slider.get_origin(), [0.5, 0.2, 0.3])

    def test_prismatic_travel_clamped(self):
        base = TransformNode("base")
        slider = TransformNode("slider")
        hand = TransformNode("hand", origin=(0, 0, 1))
        slider.link_parent(base)
        hand.link_parent(slider)
        slider.set_joint_type("prismatic")
        slider.set_enabled_axes([True, True, True])
        slider.set_constraints_max_deviation((0, 0, 0.1))
        result = _solver(iterations=5).solve(base, hand, TIP, (0.5, 0.2, 1.3))
        assert not result.success
        np.testing.assert_array_almost_equal(slider.get_origin(), [0, 0, 0.1])


# ── Degenerate geometry ───────────────────────────────────────────────

def test_target_on_pivot_is_skipped():
    base = TransformNode("base")
    joint = TransformNode("joint")
    hand = TransformNode("hand", origin=(0, 0, 1))
    joint.link_parent(base)
    hand.link_parent(joint)
    result = _solver(iterations=5).solve(base, hand, TIP, (0.0, 0.0, 0.0))
    assert not result.success
    assert result.avg_angle == 0.0
    np.testing.assert_array_equal(joint.get_orientation(), [0, 0, 0])
    assert np.isfinite(hand.get_transform()).all()


def test_end_effector_direction():
    base = TransformNode("base")
    hand = TransformNode("hand")
    hand.link_parent(base)
    direction = np.array([0.0, 1.0, 1.0]) / np.sqrt(2.0)
    result = _solver(iterations=1).solve(
        base, hand, (0, 0, 1), direction, end_effector_dir=direction)
    assert result.success
    np.testing.assert_array_almost_equal(hand.get_abs_heading(), direction)


def test_debug_guides_filled():
    base, shoulder, elbow, hand = _make_arm()
    _solver(iterations=1).solve(base, hand, TIP, (1.5, 0.0, 0.0))
    assert np.linalg.norm(shoulder.debug.target_dir) == pytest.approx(1.0)
    assert np.linalg.norm(shoulder.debug.end_effector_tip_dir) == pytest.approx(1.0)
    assert np.linalg.norm(elbow.debug.local_pivot) == pytest.approx(1.0)


# ── Settings, events and the functional entry point ───────────────────

class TestSettings:
    def test_defaults_from_bundled_config(self):
        s = SolverSettings.from_config()
        assert s.iterations > 0
        assert s.accept_distance > 0

    def test_missing_config_falls_back(self, monkeypatch, caplog):
        def _missing(name):
            raise FileNotFoundError(name)

        monkeypatch.setattr(ccd_solver, "load_config", _missing)
        with caplog.at_level(logging.WARNING, logger="chainforge.ik.ccd_solver"):
            s = SolverSettings.from_config()
        assert s == SolverSettings()
        assert "using defaults" in caplog.text

    @pytest.mark.parametrize("data", [
        {"iterations": "many"},
        {"iterations": -3},
        {"accept_distance": None},
        ["not", "a", "mapping"],
    ])
    def test_malformed_config_falls_back(self, monkeypatch, caplog, data):
        monkeypatch.setattr(ccd_solver, "load_config", lambda name: data)
        with caplog.at_level(logging.WARNING, logger="chainforge.ik.ccd_solver"):
            s = SolverSettings.from_config()
        assert s == SolverSettings()
        assert "malformed" in caplog.text

    def test_negative_values_rejected(self):
        with pytest.raises(ValueError):
            SolverSettings(iterations=-1)
        with pytest.raises(ValueError):
            SolverSettings(accept_distance=-0.1)


def test_solve_publishes_event():
    ctx = SceneContext()
    received = []
    ctx.events.subscribe(EventType.IK_SOLVE_FINISHED, lambda **kw: received.append(kw))
    base, shoulder, elbow, hand = _make_arm()
    result = _solver(context=ctx).solve(base, hand, TIP, (1.5, 0.0, 0.0))
    assert received == [{"end_effector": hand, "result": result}]


def test_solve_ik_ccd_returns_success_flag():
    base, shoulder, elbow, hand = _make_arm()
    assert solve_ik_ccd(base, hand, TIP, (1.5, 0.0, 0.0))
    base, shoulder, elbow, hand = _make_arm()
    assert not solve_ik_ccd(base, hand, TIP, (3.0, 0.0, 0.0), iterations=5)


def test_solve_ik_ccd_rejects_bad_chain(caplog):
    base, shoulder, elbow, hand = _make_arm()
    with caplog.at_level(logging.ERROR, logger="chainforge.ik.ccd_solver"):
        assert solve_ik_ccd(hand, base, TIP, (1.0, 0.0, 0.0)) is False
    assert "rejected" in caplog.text
    np.testing.assert_array_equal(shoulder.get_orientation(), [0, 0, 0])


def test_solver_raises_on_bad_chain():
    base, shoulder, elbow, hand = _make_arm()
    with pytest.raises(ChainTopologyError):
        _solver().solve(TransformNode("stray"), hand, TIP, (1.0, 0.0, 0.0))
