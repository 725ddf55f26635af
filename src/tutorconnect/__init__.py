"""
The main entrypoint for the TutorConnect package.

This module contains the TutorConnect Dash application. The app is assembled
from two injectable pieces: a layout builder, which renders pages from a
session's Controller, and a backend, which owns accounts, profiles and chat.
"""

import logging
from typing import Optional

from dash import Dash

from . import backend, layout
from .config import Settings, get_settings
from .controller import Sessions

logger = logging.getLogger(__name__)

__all__ = ["TutorConnect"]


class TutorConnect(Dash):
    """
    A tutoring marketplace where students find teachers and chat with them.

    Each browser session gets its own Controller, created on first load and
    kept in ``self.sessions``. Every session shares the storage of
    ``self.store``, the data backend. The name ``backend`` belongs to Dash.
    """

    def __init__(
        self,
        layout: Optional["layout.Layout"] = None,
        backend: Optional["backend.Backend"] = None,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the TutorConnect application.

        Parameters
        ----------
        layout : layout.Layout, optional
            Layout builder for constructing the Dash component trees.
            Defaults to layout.Bootstrap().
        backend : backend.Backend, optional
            Data and auth backend. Defaults to whatever ``settings.backend``
            names: backend.InMemory() or backend.Firebase().
        settings : config.Settings, optional
            Defaults to the settings read from the environment.
        **kwargs
            Additional arguments passed to the Dash constructor.

        Raises
        ------
        ValueError
            If the layout is missing component ids the callbacks rely on.

        Examples
        --------
        >>> app = TutorConnect()

        >>> app = TutorConnect(backend=backend.Firebase(api_key="your-key"))
        """
        self.settings = settings or get_settings()
        layout_module = globals()["layout"]

        if layout:
            self.layout_builder = layout
        else:
            self.layout_builder = layout_module.Bootstrap(
                toast_duration_ms=self.settings.toast_duration_ms,
                poll_interval_ms=self.settings.chat_poll_interval_ms,
            )

        self.store = backend if backend is not None else self._default_backend()

        kwargs.setdefault("title", self.settings.title)
        kwargs.setdefault("suppress_callback_exceptions", True)
        if "external_stylesheets" not in kwargs:
            kwargs["external_stylesheets"] = []
        kwargs["external_stylesheets"].extend(
            self.layout_builder.get_external_stylesheets()
        )

        if "external_scripts" not in kwargs:
            kwargs["external_scripts"] = []
        kwargs["external_scripts"].extend(self.layout_builder.get_external_scripts())

        super().__init__(**kwargs)

        self.sessions = Sessions(self.store, ttl_s=self.settings.session_ttl_s)
        self.layout = self.layout_builder.build_layout()
        self._validate_layout()
        self._register_callbacks()

    def _default_backend(self) -> "backend.Backend":
        backend_module = globals()["backend"]
        settings = self.settings
        if settings.backend == "firebase":
            if not settings.firebase_api_key:
                raise ValueError(
                    "TUTORCONNECT_FIREBASE_API_KEY must be set to use the firebase backend"
                )
            try:
                return backend_module.Firebase(
                    api_key=settings.firebase_api_key,
                    credentials=settings.firebase_credentials,
                    project_id=settings.firebase_project_id,
                )
            except ImportError:
                import warnings

                warnings.warn(
                    "TutorConnect is running with an in-memory backend because "
                    "'firebase-admin' is not installed. "
                    'For the Firebase backend, install with: pip install "tutorconnect[firebase]"',
                    UserWarning,
                )
        logger.info("Using the in-memory backend")
        return backend_module.InMemory()

    def _validate_layout(self) -> None:
        missing = layout.REQUIRED_IDS - layout.collect_ids(self.layout)
        if missing:
            raise ValueError(
                f"Layout is missing required component ids: {sorted(missing)}"
            )

    def _register_callbacks(self) -> None:
        """Registers all the callbacks that drive the views."""
        from .callbacks import register_callbacks

        register_callbacks(self)
