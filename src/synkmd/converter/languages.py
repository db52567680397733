"""Code macro language identifiers.

Maps the language names people write after a code fence to the identifiers
the code macro understands.
"""

LANGUAGE_ALIASES = {
    "abap": "abap",
    "actionscript3": "actionscript3",
    "ada": "ada",
    "applescript": "applescript",
    "arduino": "arduino",
    "autoit": "autoit",
    "bash": "bash",
    "sh": "bash",
    "zsh": "bash",
    "c": "c",
    "c#": "c#",
    "csharp": "c#",
    "cs": "c#",
    "clojure": "clojure",
    "coffeescript": "coffeescript",
    "coldfusion": "coldfusion",
    "cpp": "cpp",
    "c++": "cpp",
    "css": "css",
    "cuda": "cuda",
    "d": "d",
    "dart": "dart",
    "delphi": "delphi",
    "diff": "diff",
    "patch": "diff",
    "dockerfile": "dockerfile",
    "docker": "dockerfile",
    "elixir": "elixir",
    "erl": "erl",
    "erlang": "erl",
    "fortran": "fortran",
    "foxpro": "foxpro",
    "gherkin": "gherkin",
    "go": "go",
    "golang": "go",
    "graphql": "graphql",
    "groovy": "groovy",
    "handlebars": "handlebars",
    "haskell": "haskell",
    "haxe": "haxe",
    "hcl": "hcl",
    "terraform": "hcl",
    "html": "html",
    "java": "java",
    "javafx": "javafx",
    "javascript": "js",
    "js": "js",
    "json": "json",
    "jsx": "jsx",
    "julia": "julia",
    "kotlin": "kotlin",
    "livescript": "livescript",
    "lua": "lua",
    "mathematica": "mathematica",
    "matlab": "matlab",
    "objectivec": "objectivec",
    "objectivej": "objectivej",
    "ocaml": "ocaml",
    "octave": "octave",
    "pascal": "pascal",
    "perl": "perl",
    "php": "php",
    "powershell": "powershell",
    "ps1": "powershell",
    "prolog": "prolog",
    "protobuf": "protobuf",
    "puppet": "puppet",
    "py": "py",
    "python": "py",
    "python3": "py",
    "qml": "qml",
    "r": "r",
    "racket": "racket",
    "rst": "rst",
    "ruby": "ruby",
    "rb": "ruby",
    "rust": "rust",
    "rs": "rust",
    "sass": "sass",
    "scss": "sass",
    "scala": "scala",
    "scheme": "scheme",
    "shell": "shell",
    "console": "shell",
    "smalltalk": "smalltalk",
    "splunk": "splunk",
    "sql": "sql",
    "standardml": "standardml",
    "swift": "swift",
    "tcl": "tcl",
    "tex": "tex",
    "text": "none",
    "txt": "none",
    "plain": "none",
    "plaintext": "none",
    "text/plain": "none",
    "none": "none",
    "toml": "toml",
    "tsx": "tsx",
    "typescript": "typescript",
    "ts": "typescript",
    "vala": "vala",
    "vb": "vb",
    "verilog": "verilog",
    "vhdl": "vhdl",
    "xml": "xml",
    "xquery": "xquery",
    "yaml": "yaml",
    "yml": "yaml",
}


def resolve_language(language: str, force_valid: bool = False) -> str:
    """Return the code macro identifier for a fence language.

    Unknown languages pass through unchanged unless force_valid is set,
    in which case they become "none".
    """
    resolved = LANGUAGE_ALIASES.get(language.lower())
    if resolved is not None:
        return resolved
    return "none" if force_valid else language
