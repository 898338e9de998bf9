import os

# keep litellm from fetching its model cost map over the network while tests import it
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
