"""LocalAssist.

A local-first assistant that routes each utterance to memory, language-model
and user-registered agents, answering from stored memories when it can.
"""

__version__ = "0.1.0"
