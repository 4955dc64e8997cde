import json
import logging
import os

DEFAULTS = {
    'db_path': None,                    # None = ~/.oralparticipation/oralparticipation.db
    'grade_snapshot_days': 30,          # Zeitraum für den Bewertungs-Snapshot einer Note
    'history_days': 30,                 # Tage in der Verlaufsansicht
    'default_reminder_frequency': 7,
}


def _base_dir():
    base = os.path.join(os.path.expanduser('~'), '.oralparticipation')
    os.makedirs(base, exist_ok=True)
    return base


def _config_path():
    return os.path.join(_base_dir(), 'oralparticipation_config.json')


def default_db_path() -> str:
    cfg_path = load_config().get('db_path')
    return cfg_path or os.path.join(_base_dir(), 'oralparticipation.db')


def load_config():
    path = _config_path()
    if not os.path.exists(path):
        return dict(DEFAULTS)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            stored = json.load(f)
    except (OSError, ValueError) as e:
        logging.warning(f"[OralParticipation] Konfiguration {path} unlesbar, nutze Standardwerte: {e}")
        return dict(DEFAULTS)
    cfg = dict(DEFAULTS)
    if isinstance(stored, dict):
        cfg.update(stored)
    return cfg


def save_config(cfg: dict):
    path = _config_path()
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(cfg, f, ensure_ascii=False, indent=2)
