class DiceRollError(ValueError):
    pass


class ConfigurationError(DiceRollError):
    pass


class InvariantError(DiceRollError):
    pass
