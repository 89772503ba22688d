from datetime import datetime

import pytest

from swifttiger.services.routing.assignment import assign_jobs, assignment_score, skill_match
from swifttiger.services.routing.models import Location, Stop, Technician


def _stop(job_id, lat=41.9, lng=-87.6, **kwargs):
    return Stop(job_id=job_id, location=Location(lat, lng), **kwargs)


def test_skill_match_scores():
    assert skill_match([], ["anything"]) == (1.0, True)
    score, eligible = skill_match(["HVAC", "Electrical"], ["hvac", "electrical"])
    assert eligible and score == pytest.approx(1.0)
    partial, eligible = skill_match(["HVAC", "Electrical"], ["HVAC"])
    assert not eligible
    assert partial == pytest.approx(1 / 2.5)


def test_priority_raises_score():
    low = assignment_score(1.0, 10.0, _stop("a", priority="Low"))
    high = assignment_score(1.0, 10.0, _stop("b", priority="High"))
    assert high > low


def test_workload_penalty_only_when_balancing():
    stop = _stop("a")
    assert assignment_score(1.0, 0.0, stop, fill_ratio=0.5) < assignment_score(1.0, 0.0, stop, fill_ratio=0.0)
    assert assignment_score(1.0, 0.0, stop, fill_ratio=0.5, balance_workload=False) == assignment_score(1.0, 0.0, stop)


def test_jobs_go_to_closest_qualified_technician():
    north = Technician(id="n", name="North", location=Location(42.05, -87.68))
    south = Technician(id="s", name="South", location=Location(41.75, -87.60))
    jobs = [_stop("evanston", 42.04, -87.69), _stop("hyde-park", 41.79, -87.59)]
    plan = assign_jobs(jobs, [north, south], balance_workload=False)
    by_tech = {r.technician.id: r.route.job_ids for r in plan.routes}
    assert by_tech == {"n": ["evanston"], "s": ["hyde-park"]}
    assert plan.unassigned == []


def test_missing_skills_leave_job_unassigned():
    tech = Technician(id="t", name="Tech", skills=["Installation"], location=Location(41.9, -87.6))
    jobs = [_stop("a", required_skills=["Installation"]), _stop("b", required_skills=["Welding"])]
    plan = assign_jobs(jobs, [tech])
    assert plan.routes[0].route.job_ids == ["a"]
    assert [s.job_id for s in plan.unassigned] == ["b"]


def test_capacity_counts_existing_jobs():
    tech = Technician(id="t", name="Tech", max_daily_jobs=3, current_job_count=2, location=Location(41.9, -87.6))
    plan = assign_jobs([_stop("a"), _stop("b"), _stop("c")], [tech])
    assert plan.assigned_count == 1
    assert len(plan.unassigned) == 2


def test_high_priority_jobs_are_placed_first():
    tech = Technician(id="t", name="Tech", max_daily_jobs=1, location=Location(41.9, -87.6))
    jobs = [_stop("low", priority="Low"), _stop("high", priority="High")]
    plan = assign_jobs(jobs, [tech])
    assert plan.routes[0].route.job_ids == ["high"]
    assert [s.job_id for s in plan.unassigned] == ["low"]


def test_balancing_spreads_work():
    here = Location(41.9, -87.6)
    techs = [Technician(id="a", name="A", location=here), Technician(id="b", name="B", location=here)]
    jobs = [_stop(f"j{i}", 41.9 + i * 0.001, -87.6, scheduled_date=datetime(2024, 5, 6, 9, i)) for i in range(4)]
    plan = assign_jobs(jobs, techs, balance_workload=True)
    counts = sorted(len(r.route.stops) for r in plan.routes)
    assert counts == [2, 2]


def test_no_technicians_means_everything_unassigned():
    plan = assign_jobs([_stop("a"), _stop("b")], [])
    assert plan.routes == []
    assert len(plan.unassigned) == 2


def test_technician_routes_are_optimized():
    tech = Technician(id="t", name="Tech", location=Location(41.0, -87.0))
    jobs = [_stop("far", 41.0, -87.3), _stop("near", 41.0, -87.1), _stop("mid", 41.0, -87.2)]
    plan = assign_jobs(jobs, [tech])
    route = plan.routes[0].route
    assert route.job_ids == ["near", "mid", "far"]
    assert route.total_distance_miles <= route.baseline_distance_miles
