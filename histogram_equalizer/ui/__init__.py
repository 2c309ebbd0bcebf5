# UI package initialization
