from __future__ import annotations


class SkillsyncError(RuntimeError):
    pass


class GitCloneError(SkillsyncError):
    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url

    @property
    def is_timeout(self) -> bool:
        return isinstance(self, GitTimeoutError)

    @property
    def is_auth_error(self) -> bool:
        return isinstance(self, GitAuthError)


class GitTimeoutError(GitCloneError):
    pass


class GitAuthError(GitCloneError):
    pass
