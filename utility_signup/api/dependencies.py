"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from utility_signup.services.engine import SignupEngine
from utility_signup.services.registration import RegistrationOrchestrator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_engine(request: Request) -> SignupEngine:
    """Engine built by the application factory"""
    return request.app.state.engine


def get_orchestrator(request: Request) -> RegistrationOrchestrator:
    return get_engine(request).orchestrator
