"""ETDS - Emergency Travel Document Service.

Application workflow for emergency travel documents: mission operators
capture applications, agencies verify them, and the ministry decides.
"""

__version__ = "0.1.0"
