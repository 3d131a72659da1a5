"""storyport - move long-form fiction between editor trees and document formats."""

__version__ = "0.1.0"
