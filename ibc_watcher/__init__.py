DEFAULT_CONFIG_PATH = 'chains.toml'
