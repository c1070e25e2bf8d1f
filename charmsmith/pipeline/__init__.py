"""
Charm Generation Pipeline

Four sequential async stages:
1. Preprocess - padded greyscale working image (remote transform, local fallback)
2. Vision - product name, story and synthesis prompt
3. Synthesis - gold rendering (timeout + bounded retry, the only terminal stage)
4. Derive - silver rendering desaturated from gold (never fails)
"""
