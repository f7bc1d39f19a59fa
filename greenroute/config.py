"""
Configuration

YAML and JSON files from the project ``config/`` directory layered over
built-in defaults. Components receive plain camelCase section dicts.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


# Built-in defaults; file values are merged over these
DEFAULT_CONFIG: Dict[str, Any] = {
    'routing': {
        'graph': {
            'congestion': {
                'alpha': 0.15,
                'beta': 4.0,
                'overloadGain': 2.0,
            },
            'decayHalfLife': 300.0,
            'staleAfter': 1800.0,
            'defaultSignalDelay': 8.0,
        },
        'routing': {
            'kAlternatives': 3,
            'responseBudget': 10.0,
            'diversificationPenalty': 0.3,
            'maxWorkers': 4,
        },
        'loadBalancer': {
            'overloadThreshold': 1.0,
            'maxRebalanceRounds': 10,
            'vehiclesPerRequest': 1.0,
            'batchBudget': 10.0,
        },
        'scheduler': {
            'changeThreshold': 60.0,
            'minInterval': 5.0,
            'maxInterval': 45.0,
            'checkInterval': 1.0,
        },
    },
    'emergency': {
        'defaultSpeed': 50.0,
        'lookaheadIntersections': 3,
        'windowLead': 10.0,
        'windowClearance': 5.0,
        'coordinatedDelayFactor': 0.5,
        'positionGrace': 30.0,
        'restoreDeadline': 60.0,
        'maxDeferral': 45.0,
        'monitorInterval': 1.0,
        'maxWorkers': 2,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# File suffix -> (parser, parse errors)
_PARSERS = {
    '.yaml': (yaml.safe_load, yaml.YAMLError),
    '.yml': (yaml.safe_load, yaml.YAMLError),
    '.json': (json.load, json.JSONDecodeError),
}


class ConfigManager:
    """
    Layered configuration for the routing core

    Each file in the config directory becomes a top-level section named
    after its stem (``routing.yaml`` -> ``routing``). Sections are merged
    over DEFAULT_CONFIG, so a deployment only writes the keys it changes.
    A file that fails to parse is skipped with a warning and its section
    falls back to the defaults.

    Usage:
        cfg = ConfigManager("/etc/greenroute")
        cfg.get('routing.scheduler.maxInterval')      # 45.0
        balancer = LoadBalancer(optimizer, cfg.get_load_balancer_config())
    """

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir else Path(__file__).parent.parent / "config"
        self.configs: Dict[str, Any] = {}
        self.failed_files: List[str] = []
        self._load_all_configs()

    def _load_all_configs(self):
        sections: Dict[str, Any] = {}
        self.failed_files = []

        if not self.config_dir.is_dir():
            logger.info("[CONFIG] No config directory at %s, using defaults", self.config_dir)
        else:
            for path in sorted(self.config_dir.iterdir()):
                if path.suffix not in _PARSERS:
                    continue
                parse, parse_error = _PARSERS[path.suffix]
                try:
                    with path.open('r') as f:
                        data = parse(f) or {}
                except (OSError, parse_error) as e:
                    logger.warning("[CONFIG] Skipping %s: %s", path.name, e)
                    self.failed_files.append(path.name)
                    continue
                if not isinstance(data, dict):
                    logger.warning("[CONFIG] Skipping %s: top level must be a mapping", path.name)
                    self.failed_files.append(path.name)
                    continue
                sections[path.stem] = _deep_merge(sections.get(path.stem, {}), data)
                logger.info("[CONFIG] Loaded %s", path.name)

        self.configs = _deep_merge(DEFAULT_CONFIG, sections)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a dot-separated key such as ``emergency.positionGrace``

        Returns ``default`` as soon as a path component is missing or the
        value above it is not a mapping.
        """
        value: Any = self.configs
        for part in key.split('.'):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def get_graph_config(self) -> Dict[str, Any]:
        return self.get('routing.graph', {})

    def get_routing_config(self) -> Dict[str, Any]:
        return self.get('routing.routing', {})

    def get_load_balancer_config(self) -> Dict[str, Any]:
        return self.get('routing.loadBalancer', {})

    def get_scheduler_config(self) -> Dict[str, Any]:
        return self.get('routing.scheduler', {})

    def get_emergency_config(self) -> Dict[str, Any]:
        return self.get('emergency', {})

    def reload(self):
        """Re-read the config directory; runtime overrides from set() are lost"""
        logger.info("[CONFIG] Reloading from %s", self.config_dir)
        self._load_all_configs()

    def set(self, key: str, value: Any):
        """Override one dot-separated key in memory (not written back to disk)"""
        *parents, leaf = key.split('.')
        section = self.configs
        for part in parents:
            if not isinstance(section.get(part), dict):
                section[part] = {}
            section = section[part]
        section[leaf] = value
