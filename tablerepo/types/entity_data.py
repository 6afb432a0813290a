from typing import Any, Dict

EntityData = Dict[str, Any]
