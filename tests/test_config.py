import logging

from envelope_engine.config import (
    DEFAULT_CATCH_ALL_ENVELOPE,
    EngineSettings,
    configure_logging,
    load_settings,
)


def test_defaults_without_environment():
    settings = load_settings({})

    assert settings == EngineSettings()
    assert settings.catch_all_envelope_name == DEFAULT_CATCH_ALL_ENVELOPE
    assert settings.max_adjustment_per_deposit_dollars == 200.0
    assert settings.due_soon_window_days == 7
    assert settings.deposit_amount_assumption_dollars == 2500.0
    assert settings.routing_deposits == 2
    assert settings.deposit_cadence_days == 14


def test_environment_overrides():
    settings = load_settings({
        'ROUTING_CATCH_ALL_POD': ' Leftovers ',
        'ROUTING_MAX_ADJUSTMENT_PER_DEPOSIT': '0',
        'FIXIT_DUE_SOON_WINDOW_DAYS': '10',
        'FIXIT_DEPOSIT_AMOUNT_ASSUMPTION': '3100.50',
        'FIXIT_ROUTING_DEPOSITS': '3.7',
        'FIXIT_DEPOSIT_CADENCE_DAYS': '7',
    })

    assert settings.catch_all_envelope_name == 'Leftovers'
    assert settings.max_adjustment_per_deposit_dollars == 0.0
    assert settings.due_soon_window_days == 10
    assert settings.deposit_amount_assumption_dollars == 3100.5
    assert settings.routing_deposits == 3
    assert settings.deposit_cadence_days == 7


def test_unparsable_values_fall_back_to_defaults():
    settings = load_settings({
        'ROUTING_CATCH_ALL_POD': '   ',
        'FIXIT_DUE_SOON_WINDOW_DAYS': 'soon',
        'FIXIT_DEPOSIT_AMOUNT_ASSUMPTION': '',
    })

    assert settings == EngineSettings()


def test_load_settings_reads_process_environment(monkeypatch):
    monkeypatch.setenv('FIXIT_ROUTING_DEPOSITS', '4')

    assert load_settings().routing_deposits == 4


def test_configure_logging_sets_level():
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, list(root.handlers)
    try:
        configure_logging('debug')
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
