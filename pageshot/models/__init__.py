"""Capture data models package."""

from .capture import (
    ArtifactKind,
    CaptureArtifact,
    CaptureOptions,
    CaptureRequest,
    CaptureResult,
    CaptureStatus,
    ElementQuery,
    FailureReason,
    Interaction,
    InteractionAction,
    LoginCredentials,
    NavigationFlow,
    ScrollPlan,
    ScrollRoot,
    SessionArtifacts,
    Viewport,
)

__all__ = [
    # Request models
    'CaptureRequest',
    'CaptureOptions',
    'Viewport',
    'LoginCredentials',
    'Interaction',
    'InteractionAction',
    'NavigationFlow',

    # Working models
    'ElementQuery',
    'ScrollPlan',
    'ScrollRoot',
    'SessionArtifacts',

    # Result models
    'ArtifactKind',
    'CaptureArtifact',
    'CaptureResult',
    'CaptureStatus',
    'FailureReason',
]
