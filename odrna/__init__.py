"""
Odrna - Assistant Core

The data and automation core of the Odrna personal productivity app:
tasks, calendar events, finance transactions, premium gating, and a
chat assistant that turns free text into changes on that data.

DESIGN PRINCIPLES:
1. The LLM classifies intent → the executor validates → the store persists
2. Degrade to a conversational explanation, never crash the caller
3. Local data is the source of truth for the session
4. The cloud copy is eventually consistent (last write wins)
5. Storage layers are swappable
"""

__version__ = "1.0.0"
__author__ = "Odrna Team"
