"""Algorithm catalogue schemas.

Execution bodies are the plugin request models themselves, resolved through
``onesaas.algorithms.algorithm_request_adapter``.
"""

from typing import List

from pydantic import BaseModel


class AlgorithmInfo(BaseModel):
    name: str
    description: str
    available: bool


class AlgorithmCatalogResponse(BaseModel):
    plan: str
    rate_limit: int
    rate_period: int
    algorithms: List[AlgorithmInfo]
