"""
cardioscribe/__init__.py
------------------------
Client-side diagnosis workflow for the CardioScribe clinical assistant.

The Streamlit front-end (``app.py``) imports from here; the modules can also
be driven directly from scripts or tests:

    from cardioscribe import ApiClient, DiagnosisWorkflow
"""

from .api_client import ApiClient
from .workflow import DiagnosisWorkflow, DoctorPhase, HistoryPhase, PatientHistoryView

__all__ = [
    "ApiClient",
    "DiagnosisWorkflow",
    "DoctorPhase",
    "HistoryPhase",
    "PatientHistoryView",
]
