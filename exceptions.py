from dataclasses import dataclass


class NameServiceError(Exception):
    """Base class for errors raised by the name service client."""

    def __str__(self) -> str:
        if not self.__doc__:
            return super().__str__()
        details = ' '.join(str(a) for a in self.args)
        return f'{self.__doc__} -> {details}' if details else self.__doc__


class DecodeError(NameServiceError):
    """Account data could not be decoded"""


class TooShortError(DecodeError):
    """Account data is shorter than the layout requires"""


class BadDiscriminatorError(DecodeError):
    """Account discriminator does not match the expected account type"""


class InvalidAddressFormat(NameServiceError, ValueError):
    """Value is not a valid base58 account address"""


class InvalidSeedError(NameServiceError, ValueError):
    """Seeds can't be used for program address derivation"""


@dataclass(repr=False)
class DerivationExhausted(NameServiceError):
    """No valid bump seed found for program address"""

    program_id: str

    def __post_init__(self) -> None:
        super().__init__(self.program_id)


@dataclass(repr=False)
class UnsupportedChainError(NameServiceError):
    """No name service backend for chain"""

    chain: str

    def __post_init__(self) -> None:
        super().__init__(self.chain)
