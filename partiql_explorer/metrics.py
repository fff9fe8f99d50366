"""Engine bridge metrics, kept in process and exported as Prometheus text.

Three kinds are recorded:

  counts     monotonically increasing (executions, worker restarts)
  levels     last value wins (is a worker alive)
  durations  running sum and count of observed seconds (execution latency)

No prometheus_client dependency: ``render()`` writes the text exposition
format itself.
"""
from __future__ import annotations

import threading
from typing import Dict, Tuple

_KINDS = {'counts': 'counter', 'levels': 'gauge', 'durations': 'summary'}

_DESCRIPTIONS = {
    'engine_executions_total': 'Queries executed, by engine mode and outcome',
    'engine_execution_seconds': 'Wall time spent executing queries',
    'worker_restarts_total': 'Persistent worker replacements attempted',
    'worker_restart_failures_total': 'Persistent worker replacements that failed to start',
    'worker_alive': '1 if a persistent worker connection is live',
}

Series = Tuple[str, Tuple[Tuple[str, str], ...]]

_guard = threading.Lock()
_series: Dict[str, Dict[Series, object]] = {kind: {} for kind in _KINDS}


def _key(name: str, labels: Dict[str, str]) -> Series:
    return name, tuple(sorted(labels.items()))


def count(name: str, amount: float = 1.0, **labels: str):
    with _guard:
        key = _key(name, labels)
        _series['counts'][key] = _series['counts'].get(key, 0.0) + amount


def set_level(name: str, level: float, **labels: str):
    with _guard:
        _series['levels'][_key(name, labels)] = float(level)


def record_duration(name: str, seconds: float, **labels: str):
    with _guard:
        key = _key(name, labels)
        total, n = _series['durations'].get(key, (0.0, 0))
        _series['durations'][key] = (total + seconds, n + 1)


def value(name: str, **labels: str):
    """Current count or level of one series; 0.0 if never recorded."""
    key = _key(name, labels)
    with _guard:
        for kind in ('counts', 'levels'):
            if key in _series[kind]:
                return _series[kind][key]
    return 0.0


def _label_text(pairs) -> str:
    if not pairs:
        return ''
    return '{' + ','.join(f'{k}="{v}"' for k, v in pairs) + '}'


def render() -> str:
    out = []
    with _guard:
        for kind, prom_type in _KINDS.items():
            names = sorted({name for name, _ in _series[kind]})
            for name in names:
                out.append(f'# HELP {name} {_DESCRIPTIONS.get(name, name)}')
                out.append(f'# TYPE {name} {prom_type}')
                for (series_name, pairs), v in _series[kind].items():
                    if series_name != name:
                        continue
                    if kind == 'durations':
                        out.append(f'{name}_sum{_label_text(pairs)} {v[0]}')
                        out.append(f'{name}_count{_label_text(pairs)} {v[1]}')
                    else:
                        out.append(f'{name}{_label_text(pairs)} {v}')
    return '\n'.join(out) + '\n'


def reset():
    with _guard:
        for table in _series.values():
            table.clear()
