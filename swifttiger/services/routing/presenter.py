"""Shape optimizer output for API responses."""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from ...config import settings
from ..time_rules import day_start_local
from .models import AssignmentPlan, OptimizedRoute, Stop


def _stop_payload(stop: Stop) -> Dict[str, Any]:
    return {
        "job_id": stop.job_id,
        "name": stop.name,
        "customer_name": stop.customer_name,
        "address": stop.address,
        "lat": stop.location.lat if stop.location else None,
        "lng": stop.location.lng if stop.location else None,
        "priority": stop.priority,
        "required_skills": stop.required_skills,
        "estimated_duration": stop.service_minutes,
    }


def estimated_savings(route: OptimizedRoute) -> float:
    return round(max(0.0, route.baseline_distance_miles - route.total_distance_miles) * settings.fuel_cost_per_mile, 2)


def present_route(route: OptimizedRoute, day: Optional[date] = None) -> Dict[str, Any]:
    """Waypoints with arrival times from the configured day start, plus route totals."""
    day = day or date.today()
    clock = day_start_local(day)
    incoming = {leg.to_job_id: leg for leg in route.legs}

    waypoints: List[Dict[str, Any]] = []
    for seq, stop in enumerate(route.stops, start=1):
        leg = incoming.get(stop.job_id)
        travel_distance = leg.distance_miles if leg else 0.0
        travel_time = leg.travel_minutes if leg else 0.0
        clock = clock + timedelta(minutes=travel_time)
        item = _stop_payload(stop)
        item.update({
            "sequence_order": seq,
            "travel_distance": travel_distance,
            "travel_time": travel_time,
            "estimated_arrival_time": clock.strftime("%H:%M"),
        })
        waypoints.append(item)
        clock = clock + timedelta(minutes=stop.service_minutes or 0)

    return {
        "jobs": waypoints,
        "total_distance": route.total_distance_miles,
        "total_travel_time": route.total_travel_minutes,
        "total_time": round(route.total_minutes, 1),
        "total_fuel_cost": route.fuel_cost,
        "baseline_distance": route.baseline_distance_miles,
        "baseline_travel_time": route.baseline_travel_minutes,
        "mode": route.mode,
        "estimated_savings": estimated_savings(route),
        "estimated_time_savings": round(max(0.0, route.baseline_travel_minutes - route.total_travel_minutes), 1),
        "estimated_completion_time": clock.strftime("%H:%M"),
        "optimized": route.optimized,
        "warnings": list(route.warnings),
    }


def present_plan(plan: AssignmentPlan, day: date) -> Dict[str, Any]:
    routes: Dict[str, Any] = {}
    total_distance = 0.0
    total_fuel = 0.0
    total_time = 0.0
    savings = 0.0
    for tech_route in plan.routes:
        tech = tech_route.technician
        payload = present_route(tech_route.route, day)
        payload["technician"] = {
            "id": tech.id,
            "name": tech.name,
            "skills": tech.skills,
            "max_daily_jobs": tech.max_daily_jobs,
            "start_location": {"lat": tech.location.lat, "lng": tech.location.lng} if tech.location else None,
        }
        routes[tech.id] = payload
        total_distance += payload["total_distance"]
        total_fuel += payload["total_fuel_cost"]
        total_time += payload["total_time"]
        savings += payload["estimated_savings"]

    tech_count = len(plan.routes)
    total_jobs = plan.assigned_count
    summary = {
        "total_technicians": tech_count,
        "total_jobs": total_jobs,
        "total_distance": round(total_distance, 2),
        "total_fuel_cost": round(total_fuel, 2),
        "total_time": round(total_time, 1),
        "average_jobs_per_technician": round(total_jobs / tech_count, 2) if tech_count else 0,
        "average_distance_per_technician": round(total_distance / tech_count, 2) if tech_count else 0,
        "estimated_savings": round(savings, 2),
        "unassigned_count": len(plan.unassigned),
    }
    return {
        "date": day.isoformat(),
        "routes": routes,
        "unassigned": [_stop_payload(s) for s in plan.unassigned],
        "summary": summary,
        "warnings": list(plan.warnings),
    }
