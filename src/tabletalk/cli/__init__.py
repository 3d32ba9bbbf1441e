"""TableTalk command-line interface."""
